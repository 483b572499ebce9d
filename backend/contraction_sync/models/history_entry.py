"""History entry model backing the undo/redo stack."""

from sqlalchemy import Column, Integer, String, BigInteger, Text, JSON, Index

from contraction_sync.database import Base


class HistoryEntry(Base):
    """Persisted undo/redo entry; ``position`` is its index in the stack."""

    __tablename__ = "history_entries"

    id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False)
    action_type = Column(String(20), nullable=False)  # 'create', 'delete', 'archive', 'archive_all', 'update'
    timestamp = Column(BigInteger, nullable=False)
    description = Column(Text, nullable=False)

    event_id = Column(String(64), nullable=True)
    event_ids = Column(JSON, nullable=True)

    # Snapshots (copies, never references to live rows)
    previous_state = Column(JSON, nullable=True)
    previous_states = Column(JSON, nullable=True)
    next_state = Column(JSON, nullable=True)

    __table_args__ = (
        Index('idx_history_entries_timestamp', 'timestamp'),
    )

    def __repr__(self):
        return f"<HistoryEntry(id='{self.id}', position={self.position}, action='{self.action_type}')>"
