from typing import Any, Optional

from sqlalchemy.orm import Session

from contraction_sync.models.app_state import AppState as DBAppState

HISTORY_CURSOR_KEY = "history_cursor"
LAST_SYNC_TIME_KEY = "last_sync_time"
BACKEND_CONFIG_KEY = "backend_config"


class AppStateService:
    """Durable scalar values kept next to the event tables."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        row = self.db.get(DBAppState, key)
        if row is None or row.value is None:
            return default
        return row.value

    def set(self, key: str, value: Any, commit: bool = True) -> None:
        row = self.db.get(DBAppState, key)
        if row is None:
            self.db.add(DBAppState(key=key, value=value))
        else:
            row.value = value
        if commit:
            self.db.commit()

    def delete(self, key: str) -> None:
        row = self.db.get(DBAppState, key)
        if row is not None:
            self.db.delete(row)
            self.db.commit()
