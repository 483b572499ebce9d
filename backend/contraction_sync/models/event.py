"""Event model for locally persisted contractions."""

from sqlalchemy import Column, String, Integer, BigInteger, Boolean, Text, Index

from contraction_sync.database import Base


class Event(Base):
    """Canonical local copy of a recorded contraction."""

    __tablename__ = "events"

    id = Column(String(64), primary_key=True)

    # Timing (epoch milliseconds)
    start_time = Column(BigInteger, nullable=False)
    end_time = Column(BigInteger, nullable=True)  # null while active
    duration = Column(Integer, nullable=True)  # seconds, null while active

    # Metadata
    intensity = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    # Soft delete
    archived = Column(Boolean, default=False, nullable=False)

    # Sync bookkeeping
    sync_status = Column(String(20), default='pending', nullable=False)  # 'pending', 'synced', 'conflict'
    synced_at = Column(BigInteger, nullable=True)

    # Timestamps
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index('idx_events_start_time', 'start_time'),
        Index('idx_events_sync_status', 'sync_status'),
        Index('idx_events_archived', 'archived'),
    )

    def __repr__(self):
        return f"<Event(id='{self.id}', start={self.start_time}, end={self.end_time}, archived={self.archived})>"
