import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from contraction_sync.schemas.event import Event


class HistoryActionType(str, Enum):
    CREATE = "create"
    DELETE = "delete"
    ARCHIVE = "archive"
    ARCHIVE_ALL = "archive_all"
    UPDATE = "update"


class HistoryEntry(BaseModel):
    """
    A semantic, invertible record of one user action.

    ``previous_state``/``previous_states`` hold copies of the affected events
    as they were before the action (for ``create`` it is the created event).
    ``next_state`` is only set for ``update`` and holds the edited version so
    the edit can be redone.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action_type: HistoryActionType
    timestamp: int
    description: str
    event_id: Optional[str] = None
    event_ids: List[str] = []
    previous_state: Optional[Event] = None
    previous_states: List[Event] = []
    next_state: Optional[Event] = None


class HistoryState(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entries: List[HistoryEntry]
    current_index: int
    max_size: int
    can_undo: bool
    can_redo: bool
    undo_description: Optional[str] = None
    redo_description: Optional[str] = None
