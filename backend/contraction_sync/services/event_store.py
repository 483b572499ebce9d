"""Durable local event table; the single owner of canonical event state."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from contraction_sync.errors import NotFoundError, ValidationError
from contraction_sync.models.event import Event as DBEvent
from contraction_sync.schemas.event import EDITABLE_FIELDS, Event, SyncStatus
from contraction_sync.utils.timeutil import Clock, now_ms
from contraction_sync.utils.validation import ensure_valid

log = logging.getLogger(__name__)

_COLUMNS = (
    "id", "start_time", "end_time", "duration", "intensity", "notes",
    "created_at", "updated_at", "archived", "sync_status", "synced_at",
)


def _to_schema(row: DBEvent) -> Event:
    return Event.model_validate({column: getattr(row, column) for column in _COLUMNS})


def _write(row: DBEvent, event: Event) -> None:
    for column in _COLUMNS:
        value = getattr(event, column)
        if column == "sync_status":
            value = SyncStatus(value).value
        setattr(row, column, value)


class EventStore:
    """
    Local-first event log with soft-delete semantics.

    Every method is a coroutine so that callers treat persistence as a
    suspension point; the session itself is only ever used from the event
    loop thread.
    """

    def __init__(self, db: Session, clock: Clock = now_ms):
        self.db = db
        self.clock = clock

    def _row(self, event_id: str) -> DBEvent:
        row = self.db.get(DBEvent, event_id)
        if row is None:
            raise NotFoundError(event_id)
        return row

    async def create(self, event: Event) -> Event:
        """Insert a new event. The id must not exist yet."""
        ensure_valid(event, self.clock())
        if self.db.get(DBEvent, event.id) is not None:
            raise ValidationError([f"Event {event.id} already exists"])

        stored = event.with_changes(sync_status=SyncStatus.PENDING)
        row = DBEvent()
        _write(row, stored)
        self.db.add(row)
        self.db.commit()
        log.debug(f"Created event {stored.id} (start={stored.start_time}, end={stored.end_time})")
        return stored

    async def update(self, event_id: str, fields: Dict[str, Any]) -> Event:
        """Apply a partial edit; always stamps ``updated_at`` with the current time."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError([f"Field(s) cannot be updated: {', '.join(sorted(unknown))}"])

        row = self._row(event_id)
        current = _to_schema(row)
        now = self.clock()
        updated = current.with_changes(
            **fields,
            updated_at=max(now, current.created_at),
            sync_status=SyncStatus.PENDING,
        )
        ensure_valid(updated, now)
        _write(row, updated)
        self.db.commit()
        log.debug(f"Updated event {event_id}: {sorted(fields)}")
        return updated

    async def archive(self, event_id: str) -> Event:
        """Soft-delete: the row stays for undo/export/restore."""
        row = self._row(event_id)
        current = _to_schema(row)
        archived = current.with_changes(
            archived=True,
            updated_at=max(self.clock(), current.created_at),
            sync_status=SyncStatus.PENDING,
        )
        _write(row, archived)
        self.db.commit()
        log.debug(f"Archived event {event_id}")
        return archived

    async def archive_many(self, event_ids: Iterable[str]) -> List[Event]:
        now = self.clock()
        results = []
        for event_id in event_ids:
            row = self._row(event_id)
            current = _to_schema(row)
            archived = current.with_changes(
                archived=True,
                updated_at=max(now, current.created_at),
                sync_status=SyncStatus.PENDING,
            )
            _write(row, archived)
            results.append(archived)
        self.db.commit()
        log.debug(f"Archived {len(results)} event(s)")
        return results

    async def restore(self, snapshot: Event) -> Event:
        """
        Write a previously captured snapshot back, whether or not the row still
        exists. ``updated_at`` is re-stamped so the restored version wins the
        next last-write-wins comparison.
        """
        row = self.db.get(DBEvent, snapshot.id)
        base_updated = snapshot.updated_at if row is None else max(row.updated_at, snapshot.updated_at)
        restored = snapshot.with_changes(
            updated_at=max(self.clock(), base_updated, snapshot.created_at),
            sync_status=SyncStatus.PENDING,
        )
        if row is None:
            row = DBEvent()
            self.db.add(row)
        _write(row, restored)
        self.db.commit()
        log.debug(f"Restored event {snapshot.id} (archived={restored.archived})")
        return restored

    async def get(self, event_id: str) -> Optional[Event]:
        row = self.db.get(DBEvent, event_id)
        return _to_schema(row) if row is not None else None

    async def get_active(self) -> Optional[Event]:
        """The running (not yet stopped) event, if any."""
        row = (
            self.db.query(DBEvent)
            .filter(DBEvent.end_time.is_(None), DBEvent.archived.is_(False))
            .order_by(DBEvent.start_time.desc())
            .first()
        )
        return _to_schema(row) if row is not None else None

    async def list_active(self) -> List[Event]:
        """Non-archived events, newest first."""
        rows = (
            self.db.query(DBEvent)
            .filter(DBEvent.archived.is_(False))
            .order_by(DBEvent.start_time.desc(), DBEvent.id.desc())
            .all()
        )
        return [_to_schema(r) for r in rows]

    async def list_archived(self) -> List[Event]:
        rows = (
            self.db.query(DBEvent)
            .filter(DBEvent.archived.is_(True))
            .order_by(DBEvent.start_time.desc(), DBEvent.id.desc())
            .all()
        )
        return [_to_schema(r) for r in rows]

    async def list_all(self) -> List[Event]:
        rows = self.db.query(DBEvent).order_by(DBEvent.start_time.desc(), DBEvent.id.desc()).all()
        return [_to_schema(r) for r in rows]

    async def list_pending(self) -> List[Event]:
        rows = self.db.query(DBEvent).filter(DBEvent.sync_status == SyncStatus.PENDING.value).all()
        return [_to_schema(r) for r in rows]

    async def mark_synced(self, event_id: str, expected_updated_at: Optional[int] = None) -> bool:
        """
        Flag an event as confirmed by the remote without touching ``updated_at``.

        When ``expected_updated_at`` is given the flag is only set if the row
        has not been edited since the pushed version was captured.
        """
        row = self.db.get(DBEvent, event_id)
        if row is None:
            return False
        if expected_updated_at is not None and row.updated_at != expected_updated_at:
            log.debug(f"Event {event_id} changed since push; leaving it pending")
            return False
        row.sync_status = SyncStatus.SYNCED.value
        row.synced_at = self.clock()
        self.db.commit()
        return True

    async def set_sync_status(self, event_ids: Iterable[str], status: SyncStatus) -> None:
        ids = list(event_ids)
        if not ids:
            return
        (
            self.db.query(DBEvent)
            .filter(DBEvent.id.in_(ids))
            .update({DBEvent.sync_status: status.value})
        )
        self.db.commit()

    async def upsert_many(self, events: Iterable[Event]) -> int:
        """Write events verbatim (merge results); ``updated_at`` is preserved."""
        count = 0
        for event in events:
            row = self.db.get(DBEvent, event.id)
            if row is None:
                row = DBEvent()
                self.db.add(row)
            _write(row, event)
            count += 1
        self.db.commit()
        return count

    async def replace_with_snapshot(self, events: List[Event]) -> List[Event]:
        """
        Make the local table mirror an authoritative remote snapshot.

        Local rows missing from the snapshot are dropped unless they are still
        ``pending``: an unconfirmed local mutation is never silently discarded.
        """
        incoming = {e.id: e for e in events}
        kept_pending = 0
        for row in self.db.query(DBEvent).all():
            if row.id in incoming:
                continue
            if row.sync_status == SyncStatus.PENDING.value:
                kept_pending += 1
                continue
            self.db.delete(row)
        self.db.flush()
        await self.upsert_many(incoming.values())
        if kept_pending:
            log.info(f"Kept {kept_pending} unconfirmed local event(s) absent from remote snapshot")
        return await self.list_all()
