"""Outbound queue model for mutations awaiting the remote backend."""

from sqlalchemy import Column, Integer, String, BigInteger, Text, JSON, Index

from contraction_sync.database import Base


class SyncOperation(Base):
    """One pending remote mutation; ``id`` order is enqueue order."""

    __tablename__ = "sync_operations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(20), nullable=False)  # 'create', 'update', 'delete', 'archive', 'restore'
    event_id = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=True)  # event snapshot at enqueue time
    timestamp = Column(BigInteger, nullable=False)

    # Retry state
    retry_count = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default='pending', nullable=False)  # 'pending', 'processing', 'failed', 'completed'
    next_attempt_at = Column(BigInteger, nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_sync_operations_status', 'status'),
    )

    def __repr__(self):
        return f"<SyncOperation(id={self.id}, type='{self.type}', event='{self.event_id}', status='{self.status}')>"
