"""Key/value table for scalar local state (history cursor, last sync time, backend config)."""

from sqlalchemy import Column, String, JSON

from contraction_sync.database import Base


class AppState(Base):

    __tablename__ = "app_state"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<AppState(key='{self.key}')>"
