"""User-facing operations: every local mutation goes store -> history -> remote."""

import logging
from typing import Any, Callable, Dict, List, Optional

from contraction_sync.errors import NotFoundError, ValidationError
from contraction_sync.schemas.event import Event, EventStats
from contraction_sync.schemas.history import HistoryActionType, HistoryEntry, HistoryState
from contraction_sync.schemas.sync import OperationType
from contraction_sync.services.event_store import EventStore
from contraction_sync.services.history_manager import HistoryManager
from contraction_sync.services.sync_orchestrator import SyncOrchestrator
from contraction_sync.utils.calculations import calculate_stats
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class EventTracker:
    """
    Facade over the store, history and orchestrator.

    Mutations are applied to the local store first and recorded in history
    under the history lock; the remote push happens afterwards and its
    failures never undo the local change.
    """

    def __init__(
        self,
        store: EventStore,
        history: HistoryManager,
        orchestrator: SyncOrchestrator,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.history = history
        self.orchestrator = orchestrator
        self.clock = clock
        self._listeners: List[ChangeListener] = []
        self._remove_sync_listener = orchestrator.add_listener(self._notify)

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                log.error(f"Change listener failed: {e}", exc_info=True)

    async def _get(self, event_id: str) -> Event:
        event = await self.store.get(event_id)
        if event is None:
            raise NotFoundError(event_id)
        return event

    # Timer

    async def start_event(self, intensity: Optional[int] = None, notes: Optional[str] = None) -> Event:
        async with self.history.exclusive():
            if await self.store.get_active() is not None:
                raise ValidationError(["A contraction is already in progress"])
            now = self.clock()
            event = await self.store.create(
                Event(start_time=now, intensity=intensity, notes=notes, created_at=now, updated_at=now)
            )
            await self.history.record(
                HistoryActionType.CREATE, "Start contraction", event_id=event.id, previous_state=event
            )
        log.info(f"Started contraction {event.id}")
        await self.orchestrator.propagate(OperationType.CREATE, event)
        self._notify()
        return event

    async def stop_event(self, intensity: Optional[int] = None, notes: Optional[str] = None) -> Event:
        """Complete the running event at the current time."""
        async with self.history.exclusive():
            active = await self.store.get_active()
            if active is None:
                raise ValidationError(["No contraction is in progress"])
            fields: Dict[str, Any] = {"end_time": max(self.clock(), active.start_time)}
            if intensity is not None:
                fields["intensity"] = intensity
            if notes is not None:
                fields["notes"] = notes
            event = await self.store.update(active.id, fields)
            await self.history.record(
                HistoryActionType.UPDATE,
                "Stop contraction",
                event_id=event.id,
                previous_state=active,
                next_state=event,
            )
        log.info(f"Stopped contraction {event.id} after {event.duration}s")
        await self.orchestrator.propagate(OperationType.UPDATE, event)
        self._notify()
        return event

    # Edits

    async def add_event(
        self,
        start_time: int,
        end_time: int,
        intensity: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Event:
        """Manual entry of a completed event that was not timed live."""
        if end_time is None:
            raise ValidationError(["Manually added contractions need an end time"])
        async with self.history.exclusive():
            now = self.clock()
            event = await self.store.create(
                Event(
                    start_time=start_time,
                    end_time=end_time,
                    intensity=intensity,
                    notes=notes,
                    created_at=now,
                    updated_at=now,
                )
            )
            await self.history.record(
                HistoryActionType.CREATE, "Add contraction", event_id=event.id, previous_state=event
            )
        await self.orchestrator.propagate(OperationType.CREATE, event)
        self._notify()
        return event

    async def update_event(self, event_id: str, fields: Dict[str, Any]) -> Event:
        async with self.history.exclusive():
            before = await self._get(event_id)
            if "end_time" in fields and fields["end_time"] is None and before.end_time is not None:
                raise ValidationError(["A completed contraction cannot be reopened"])
            event = await self.store.update(event_id, fields)
            await self.history.record(
                HistoryActionType.UPDATE,
                "Edit contraction",
                event_id=event_id,
                previous_state=before,
                next_state=event,
            )
        await self.orchestrator.propagate(OperationType.UPDATE, event)
        self._notify()
        return event

    async def delete_event(self, event_id: str) -> Event:
        """User-facing delete; soft, so the event can be brought back by undo."""
        return await self._archive(event_id, HistoryActionType.DELETE, "Delete contraction")

    async def archive_event(self, event_id: str) -> Event:
        return await self._archive(event_id, HistoryActionType.ARCHIVE, "Archive contraction")

    async def _archive(self, event_id: str, action: HistoryActionType, description: str) -> Event:
        async with self.history.exclusive():
            before = await self._get(event_id)
            event = await self.store.archive(event_id)
            await self.history.record(action, description, event_id=event_id, previous_state=before)
        await self.orchestrator.propagate(OperationType.ARCHIVE, event)
        self._notify()
        return event

    async def archive_all(self) -> List[Event]:
        """Archive every active event as one undoable action."""
        async with self.history.exclusive():
            before = await self.store.list_active()
            if not before:
                return []
            archived = await self.store.archive_many([e.id for e in before])
            await self.history.record(
                HistoryActionType.ARCHIVE_ALL,
                f"Archive {len(before)} contraction{'s' if len(before) != 1 else ''}",
                event_ids=[e.id for e in before],
                previous_states=before,
            )
        log.info(f"Archived {len(archived)} contraction(s)")
        await self.orchestrator.propagate_many(OperationType.ARCHIVE, archived)
        self._notify()
        return archived

    # History

    async def undo(self) -> Optional[HistoryEntry]:
        entry = await self.history.undo()
        if entry is not None:
            self._notify()
        return entry

    async def redo(self) -> Optional[HistoryEntry]:
        entry = await self.history.redo()
        if entry is not None:
            self._notify()
        return entry

    def history_state(self) -> HistoryState:
        return self.history.get_state()

    # Queries

    async def get_event(self, event_id: str) -> Event:
        return await self._get(event_id)

    async def get_active(self) -> Optional[Event]:
        return await self.store.get_active()

    async def list_events(self, archived: bool = False) -> List[Event]:
        if archived:
            return await self.store.list_archived()
        return await self.store.list_active()

    async def stats(self) -> EventStats:
        return calculate_stats(await self.store.list_active())

    def close(self) -> None:
        self._remove_sync_listener()
        self._listeners.clear()
