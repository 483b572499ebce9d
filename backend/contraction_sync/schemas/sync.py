from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ARCHIVE = "archive"
    RESTORE = "restore"


class OperationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"


class SyncOperation(BaseModel):
    """Outbound mutation waiting to be applied to the remote backend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    type: OperationType
    event_id: str
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event snapshot taken at enqueue time")
    timestamp: int
    retry_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    next_attempt_at: Optional[int] = None
    last_error: Optional[str] = None


class DrainResult(BaseModel):
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    held: int = 0
    skipped: bool = False
    next_retry_in: Optional[float] = Field(None, description="Seconds until the earliest deferred retry is due")


class SyncStatusKind(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class SyncState(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: SyncStatusKind = SyncStatusKind.IDLE
    backend: str = "none"
    realtime_enabled: bool = False
    last_sync_time: Optional[int] = None
    pending_operations: int = 0
    failed_operations: int = 0
    error: Optional[str] = None
    message: Optional[str] = None
