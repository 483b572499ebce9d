"""Copy every event from one backend into another."""

import asyncio
import logging
from typing import Callable, List, Optional

from contraction_sync.connectors.base import BaseSyncAdapter
from contraction_sync.errors import SyncError
from contraction_sync.schemas.backend import AdapterKind, MigrationResult
from contraction_sync.schemas.event import Event, SyncStatus
from contraction_sync.services.conflict_resolver import merge_collections
from contraction_sync.services.event_store import EventStore

log = logging.getLogger(__name__)

BATCH_SIZE = 10

ProgressCallback = Callable[[str], None]


class MigrationService:
    """
    Moves data between backends: pull the source, merge it with the local
    store by last-write-wins, upload the result to the target in small
    batches, verify by pulling the target, then refresh the local store
    from what the target holds.
    """

    def __init__(
        self,
        source: BaseSyncAdapter,
        target: BaseSyncAdapter,
        store: EventStore,
        batch_size: int = BATCH_SIZE,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.source = source
        self.target = target
        self.store = store
        self.batch_size = max(1, batch_size)
        self.on_progress = on_progress

    def _progress(self, step: str) -> None:
        log.info(f"Migration: {step}")
        if self.on_progress:
            self.on_progress(step)

    async def _upload(self, event: Event, errors: List[str]) -> bool:
        try:
            await self.target.push_create(event)
            return True
        except SyncError as e:
            error_msg = f"Failed to upload event {event.id}: {e}"
            log.error(error_msg)
            errors.append(error_msg)
            return False

    async def migrate(self) -> MigrationResult:
        errors: List[str] = []

        source_events: List[Event] = []
        try:
            source_events = await self.source.pull_all(include_archived=True)
            self._progress(f"Fetched {len(source_events)} event(s) from {self.source.kind.value}")
        except SyncError as e:
            # An unreadable source still lets local data be migrated.
            error_msg = f"Failed to fetch from {self.source.kind.value}: {e}"
            log.warning(error_msg)
            errors.append(error_msg)

        local_events = await self.store.list_all()
        self._progress(f"Fetched {len(local_events)} event(s) from local storage")

        merged = merge_collections(local_events, source_events, prefer_remote_on_tie=False)
        self._progress(f"Merged {len(merged)} unique event(s)")
        if self.target.kind is AdapterKind.POLLING:
            # Sheet rows have no archived column; archived rows live elsewhere.
            merged = [e for e in merged if not e.archived]

        uploaded = 0
        for start in range(0, len(merged), self.batch_size):
            batch = merged[start:start + self.batch_size]
            results = await asyncio.gather(*(self._upload(event, errors) for event in batch))
            uploaded += sum(1 for ok in results if ok)
            self._progress(f"Uploaded {uploaded}/{len(merged)}")

        verified: List[Event] = []
        try:
            verified = await self.target.pull_all(include_archived=True)
            self._progress(f"Verified {len(verified)} event(s) in {self.target.kind.value}")
        except SyncError as e:
            error_msg = f"Failed to verify {self.target.kind.value} data: {e}"
            log.error(error_msg)
            errors.append(error_msg)

        if verified:
            await self.store.upsert_many(e.model_copy(update={"sync_status": SyncStatus.SYNCED}) for e in verified)

        success = uploaded == len(merged) and not errors
        self._progress(
            "Migration completed successfully" if success else f"Migration completed with {len(errors)} error(s)"
        )
        return MigrationResult(success=success, migrated=uploaded, verified=len(verified), errors=errors)
