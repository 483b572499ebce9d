"""Linear undo/redo over semantic action records."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from contraction_sync.models.history_entry import HistoryEntry as DBHistoryEntry
from contraction_sync.schemas.event import EDITABLE_FIELDS, Event
from contraction_sync.schemas.history import HistoryActionType, HistoryEntry, HistoryState
from contraction_sync.schemas.sync import OperationType
from contraction_sync.services.app_state import HISTORY_CURSOR_KEY, AppStateService
from contraction_sync.services.event_store import EventStore
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 50


class ChangePropagator(Protocol):
    """Sends a local change towards the remote backend (queue or direct push)."""

    async def propagate(self, op_type: OperationType, event: Event) -> None: ...

    async def propagate_many(self, op_type: OperationType, events: List[Event]) -> None: ...


def _to_schema(row: DBHistoryEntry) -> HistoryEntry:
    return HistoryEntry(
        id=row.id,
        action_type=row.action_type,
        timestamp=row.timestamp,
        description=row.description,
        event_id=row.event_id,
        event_ids=row.event_ids or [],
        previous_state=row.previous_state,
        previous_states=row.previous_states or [],
        next_state=row.next_state,
    )


def _to_row(entry: HistoryEntry, position: int) -> DBHistoryEntry:
    return DBHistoryEntry(
        id=entry.id,
        position=position,
        action_type=entry.action_type.value,
        timestamp=entry.timestamp,
        description=entry.description,
        event_id=entry.event_id,
        event_ids=list(entry.event_ids),
        previous_state=entry.previous_state.model_dump(mode="json") if entry.previous_state else None,
        previous_states=[e.model_dump(mode="json") for e in entry.previous_states],
        next_state=entry.next_state.model_dump(mode="json") if entry.next_state else None,
    )


class HistoryManager:
    """
    Arena of entry snapshots with an index cursor.

    Entries at or before ``cursor`` form the undo stack, entries after it the
    redo stack; ``cursor == -1`` means there is nothing to undo. The whole
    sequence and the cursor are persisted after every change.

    Local mutations and undo/redo share one lock (``exclusive()``). Undo or
    redo requested while the lock is held is rejected rather than queued, so
    a double tap cannot apply the same inverse twice.
    """

    def __init__(
        self,
        db: Session,
        store: EventStore,
        max_size: int = DEFAULT_MAX_SIZE,
        propagator: Optional[ChangePropagator] = None,
        clock: Clock = now_ms,
    ):
        self.db = db
        self.store = store
        self.max_size = max(1, max_size)
        self.propagator = propagator
        self.clock = clock
        self.app_state = AppStateService(db)
        self._entries: List[HistoryEntry] = []
        self._cursor = -1
        self._lock = asyncio.Lock()

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def load(self) -> None:
        """Read the persisted sequence and cursor back into memory."""
        rows = self.db.query(DBHistoryEntry).order_by(DBHistoryEntry.position).all()
        self._entries = [_to_schema(r) for r in rows]
        cursor = self.app_state.get(HISTORY_CURSOR_KEY, -1)
        self._cursor = min(max(int(cursor), -1), len(self._entries) - 1)
        log.debug(f"Loaded {len(self._entries)} history entries (cursor={self._cursor})")

    @asynccontextmanager
    async def exclusive(self):
        async with self._lock:
            yield self

    def _persist(self) -> None:
        self.db.query(DBHistoryEntry).delete()
        for position, entry in enumerate(self._entries):
            self.db.add(_to_row(entry, position))
        self.app_state.set(HISTORY_CURSOR_KEY, self._cursor, commit=False)
        self.db.commit()

    def can_undo(self) -> bool:
        return self._cursor >= 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    async def add_entry(self, entry: HistoryEntry) -> HistoryEntry:
        """
        Record a completed action. Drops the redo stack, then evicts from
        the oldest end when over capacity. Callers hold ``exclusive()``.
        """
        stored = entry.model_copy(deep=True)
        self._entries = self._entries[: self._cursor + 1]
        self._entries.append(stored)
        self._cursor += 1

        evicted = len(self._entries) - self.max_size
        if evicted > 0:
            self._entries = self._entries[evicted:]
            self._cursor -= evicted
            log.debug(f"Evicted {evicted} oldest history entr{'y' if evicted == 1 else 'ies'}")

        self._persist()
        log.debug(f"History: {stored.description} (cursor={self._cursor})")
        return stored

    async def record(
        self,
        action_type: HistoryActionType,
        description: str,
        event_id: Optional[str] = None,
        event_ids: Optional[List[str]] = None,
        previous_state: Optional[Event] = None,
        previous_states: Optional[List[Event]] = None,
        next_state: Optional[Event] = None,
    ) -> HistoryEntry:
        return await self.add_entry(
            HistoryEntry(
                action_type=action_type,
                timestamp=self.clock(),
                description=description,
                event_id=event_id,
                event_ids=event_ids or [],
                previous_state=previous_state,
                previous_states=previous_states or [],
                next_state=next_state,
            )
        )

    async def undo(self) -> Optional[HistoryEntry]:
        """Apply the inverse of the entry at the cursor; None if busy or nothing to undo."""
        if self.is_busy:
            log.info("Undo ignored: another action is still being applied")
            return None
        async with self._lock:
            if not self.can_undo():
                return None
            entry = self._entries[self._cursor]
            await self._apply_inverse(entry)
            self._cursor -= 1
            self._persist()
            log.info(f"Undid: {entry.description}")
            return entry

    async def redo(self) -> Optional[HistoryEntry]:
        """Re-apply the entry after the cursor; None if busy or nothing to redo."""
        if self.is_busy:
            log.info("Redo ignored: another action is still being applied")
            return None
        async with self._lock:
            if not self.can_redo():
                return None
            entry = self._entries[self._cursor + 1]
            await self._apply_forward(entry)
            self._cursor += 1
            self._persist()
            log.info(f"Redid: {entry.description}")
            return entry

    async def _propagate(self, op_type: OperationType, event: Event) -> None:
        if self.propagator is not None:
            await self.propagator.propagate(op_type, event)

    async def _propagate_many(self, op_type: OperationType, events: List[Event]) -> None:
        if self.propagator is not None and events:
            await self.propagator.propagate_many(op_type, events)

    async def _apply_inverse(self, entry: HistoryEntry) -> None:
        action = entry.action_type
        if action is HistoryActionType.CREATE:
            archived = await self.store.archive(entry.event_id)
            await self._propagate(OperationType.ARCHIVE, archived)
        elif action in (HistoryActionType.DELETE, HistoryActionType.ARCHIVE):
            restored = await self.store.restore(entry.previous_state)
            await self._propagate(OperationType.RESTORE, restored)
        elif action is HistoryActionType.ARCHIVE_ALL:
            restored = [await self.store.restore(snapshot) for snapshot in entry.previous_states]
            await self._propagate_many(OperationType.RESTORE, restored)
        elif action is HistoryActionType.UPDATE:
            restored = await self.store.restore(entry.previous_state)
            await self._propagate(OperationType.UPDATE, restored)

    async def _apply_forward(self, entry: HistoryEntry) -> None:
        action = entry.action_type
        if action is HistoryActionType.CREATE:
            restored = await self.store.restore(entry.previous_state)
            await self._propagate(OperationType.RESTORE, restored)
        elif action in (HistoryActionType.DELETE, HistoryActionType.ARCHIVE):
            archived = await self.store.archive(entry.event_id)
            await self._propagate(OperationType.ARCHIVE, archived)
        elif action is HistoryActionType.ARCHIVE_ALL:
            archived = await self.store.archive_many(entry.event_ids)
            await self._propagate_many(OperationType.ARCHIVE, archived)
        elif action is HistoryActionType.UPDATE:
            fields = entry.next_state.model_dump(include=set(EDITABLE_FIELDS))
            updated = await self.store.update(entry.event_id, fields)
            await self._propagate(OperationType.UPDATE, updated)

    def get_state(self) -> HistoryState:
        undo_entry = self._entries[self._cursor] if self.can_undo() else None
        redo_entry = self._entries[self._cursor + 1] if self.can_redo() else None
        return HistoryState(
            entries=self.entries,
            current_index=self._cursor,
            max_size=self.max_size,
            can_undo=undo_entry is not None,
            can_redo=redo_entry is not None,
            undo_description=undo_entry.description if undo_entry else None,
            redo_description=redo_entry.description if redo_entry else None,
        )

    async def clear(self) -> None:
        async with self._lock:
            self._entries = []
            self._cursor = -1
            self._persist()
        log.info("History cleared")
