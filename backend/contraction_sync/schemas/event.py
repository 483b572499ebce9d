import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


# Fields that only describe local sync bookkeeping; they never decide a merge
# and are ignored when comparing two versions of an event for equality.
BOOKKEEPING_FIELDS = frozenset({"sync_status", "synced_at", "updated_at"})

# Fields a caller may change through an update.
EDITABLE_FIELDS = frozenset({"start_time", "end_time", "intensity", "notes", "archived"})


def calculate_duration(start_time: int, end_time: int) -> int:
    """Duration in whole seconds between two epoch-ms instants."""
    return (end_time - start_time) // 1000


def new_event_id() -> str:
    return str(uuid.uuid4())


class Event(BaseModel):
    """One recorded contraction. Wire names are camelCase (``startTime``...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=new_event_id, description="Client-generated stable identifier")
    start_time: int = Field(..., description="Start instant, epoch milliseconds")
    end_time: Optional[int] = Field(None, description="End instant, null while active")
    duration: Optional[int] = Field(None, description="Derived duration in seconds, null while active")
    intensity: Optional[int] = Field(None, description="Optional 1-10 intensity")
    notes: Optional[str] = None
    created_at: int
    updated_at: int
    archived: bool = False
    sync_status: SyncStatus = SyncStatus.PENDING
    synced_at: Optional[int] = None

    @model_validator(mode="after")
    def _derive_duration(self) -> "Event":
        if self.end_time is None:
            self.duration = None
        else:
            self.duration = calculate_duration(self.start_time, self.end_time)
        return self

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def with_changes(self, **changes: Any) -> "Event":
        """Return a re-validated copy with ``changes`` applied (duration re-derived)."""
        data = self.model_dump()
        data.update(changes)
        return Event.model_validate(data)

    def snapshot(self) -> "Event":
        return self.model_copy(deep=True)

    def content(self) -> Dict[str, Any]:
        """Field values without local bookkeeping."""
        return self.model_dump(exclude=set(BOOKKEEPING_FIELDS))


class EventCreate(BaseModel):
    """Manual entry of a completed event; live events go through the timer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_time: int
    end_time: int
    intensity: Optional[int] = None
    notes: Optional[str] = None


class EventUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_time: Optional[int] = None
    end_time: Optional[int] = None
    intensity: Optional[int] = None
    notes: Optional[str] = None


class EventStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int = 0
    average_duration: int = Field(0, description="Seconds")
    average_interval: int = Field(0, description="Seconds")
    last_event: Optional[Event] = None
    recent_events: List[Event] = []
    active_labor_pattern: bool = False
