"""Database models."""

from contraction_sync.models.event import Event
from contraction_sync.models.sync_operation import SyncOperation
from contraction_sync.models.history_entry import HistoryEntry
from contraction_sync.models.app_state import AppState

__all__ = [
    "Event",
    "SyncOperation",
    "HistoryEntry",
    "AppState",
]
