"""Drives queue draining, polling reconciliation and live subscriptions."""

import asyncio
import logging
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from contraction_sync.connectors.base import BaseSyncAdapter, Unsubscribe
from contraction_sync.connectors.passive_adapter import LOCAL_ONLY_MESSAGE
from contraction_sync.errors import BackendUnconfiguredError, SyncError
from contraction_sync.schemas.backend import AdapterKind
from contraction_sync.schemas.event import Event, SyncStatus
from contraction_sync.schemas.sync import DrainResult, OperationType, SyncOperation, SyncState, SyncStatusKind
from contraction_sync.services.app_state import LAST_SYNC_TIME_KEY, AppStateService
from contraction_sync.services.conflict_resolver import merge_collections, resolve_conflict
from contraction_sync.services.event_store import EventStore
from contraction_sync.services.sync_queue import SyncQueue
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)

SYNC_JOB_ID = "periodic_sync_job"
DEFAULT_INTERVAL_SECONDS = 60

ChangeListener = Callable[[], None]


class SyncOrchestrator:
    """
    Coordinates one adapter with the local store and outbound queue.

    Triggers: ``start()`` (startup), ``set_online(True)`` (reconnect), the
    interval job (polling backend only) and explicit ``sync_now()``. Each
    trigger drains the queue; the polling backend additionally pulls and
    merges, while the realtime backend receives snapshots through its
    subscription instead.

    Failed queue operations are re-submitted from an asyncio task once their
    backoff delay has elapsed, so nothing waits on a retry delay.
    """

    def __init__(
        self,
        adapter: BaseSyncAdapter,
        store: EventStore,
        queue: SyncQueue,
        app_state: AppStateService,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        scheduler: Optional[AsyncIOScheduler] = None,
        auto_drain: bool = True,
        clock: Clock = now_ms,
    ):
        self.adapter = adapter
        self.store = store
        self.queue = queue
        self.app_state = app_state
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self.auto_drain = auto_drain
        self.clock = clock

        self._online = True
        self._started = False
        self._syncing = False
        self._status = SyncStatusKind.IDLE
        self._error: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._listeners: List[ChangeListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_polling(self) -> bool:
        return self.adapter.kind is AdapterKind.POLLING

    @property
    def is_realtime(self) -> bool:
        return self.adapter.kind is AdapterKind.REALTIME

    # Lifecycle

    async def start(self) -> None:
        """Recover the queue, arm the interval job or subscription, run the startup sync."""
        if self._started:
            return
        self._started = True
        await self.queue.recover_interrupted()

        if self.is_polling:
            if self.scheduler is None:
                self.scheduler = AsyncIOScheduler()
            self.scheduler.add_job(
                self._scheduled_sync,
                IntervalTrigger(seconds=self.interval_seconds),
                id=SYNC_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            if not self.scheduler.running:
                self.scheduler.start()
            log.info(f"Polling sync scheduled every {self.interval_seconds}s")
        elif self.is_realtime:
            self._subscribe()

        await self.sync(trigger="startup")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False

        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self.scheduler is not None:
            if self.scheduler.get_job(SYNC_JOB_ID):
                self.scheduler.remove_job(SYNC_JOB_ID)
            if self._owns_scheduler and self.scheduler.running:
                self.scheduler.shutdown(wait=False)
                self.scheduler = None

        await self.adapter.close()
        log.info("Sync orchestrator stopped")

    def _subscribe(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.adapter.subscribe(self._handle_snapshot)

    async def set_online(self, online: bool) -> None:
        """Connectivity transition reported by the host."""
        was_online = self._online
        self._online = online
        if not online:
            self._status = SyncStatusKind.OFFLINE
            log.info("Connectivity lost; sync paused")
            self._notify()
            return
        if not was_online:
            log.info("Connectivity restored; syncing")
            if self._status is SyncStatusKind.OFFLINE:
                self._status = SyncStatusKind.IDLE
            await self.sync(trigger="reconnect")

    # Listeners

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
                log.error(f"Sync listener failed: {e}", exc_info=True)

    # Sync passes

    async def _scheduled_sync(self) -> None:
        try:
            await self.sync(trigger="interval")
        except Exception as e:
            log.error(f"Scheduled sync failed: {e}", exc_info=True)

    async def sync_now(self) -> SyncState:
        """User-requested sync; raises when no backend is configured."""
        return await self.sync(trigger="manual")

    async def sync(self, trigger: str = "manual") -> SyncState:
        """
        Run one sync pass. Errors are recorded on the state and logged, never
        raised, except for a manual trigger against the passive backend.
        """
        if not self._online:
            self._status = SyncStatusKind.OFFLINE
            log.info(f"Sync ({trigger}) skipped: offline")
            return await self.get_state()

        if not self.adapter.is_configured:
            if trigger == "manual":
                raise BackendUnconfiguredError("No sync backend configured")
            return await self.get_state()

        if self._syncing:
            log.info(f"Sync ({trigger}) skipped: previous pass still running")
            return await self.get_state()

        self._syncing = True
        self._status = SyncStatusKind.SYNCING
        log.info(f"Starting sync ({trigger}) against {self.adapter.kind.value} backend")
        try:
            result = await self.drain_queue()
            if self.is_polling:
                await self._pull_and_merge()
            self.app_state.set(LAST_SYNC_TIME_KEY, self.clock())
            self._status = SyncStatusKind.IDLE
            self._error = None
            log.info(
                f"Sync ({trigger}) completed: {result.completed} pushed, "
                f"{result.retried} deferred, {result.failed} failed"
            )
        except SyncError as e:
            self._status = SyncStatusKind.ERROR
            self._error = str(e)
            log.warning(f"Sync ({trigger}) failed: {e}")
        except Exception as e:
            self._status = SyncStatusKind.ERROR
            self._error = str(e)
            log.error(f"Sync ({trigger}) failed unexpectedly: {e}", exc_info=True)
        finally:
            self._syncing = False

        self._notify()
        return await self.get_state()

    async def _pull_and_merge(self) -> None:
        remote = await self.adapter.pull_all()
        local = await self.store.list_all()
        merged = merge_collections(local, remote, prefer_remote_on_tie=self.adapter.prefer_remote_on_tie)

        # Events with unconfirmed pushes stay pending even when a merge picked them.
        outstanding = await self.queue.outstanding_event_ids()
        merged = [
            e.model_copy(update={"sync_status": SyncStatus.PENDING}) if e.id in outstanding else e
            for e in merged
        ]
        await self.store.upsert_many(merged)
        log.debug(f"Merged {len(remote)} remote event(s) into {len(local)} local event(s)")

    async def _handle_snapshot(self, events: List[Event]) -> None:
        """
        Realtime push: the remote snapshot replaces local state. Local events
        still waiting in the queue keep whichever version wins last-write-wins.
        """
        outstanding = await self.queue.outstanding_event_ids()
        if outstanding:
            local = {e.id: e for e in await self.store.list_all()}
            resolved = []
            for remote_event in events:
                local_event = local.get(remote_event.id)
                if remote_event.id in outstanding and local_event is not None:
                    resolved.append(resolve_conflict(local_event, remote_event, prefer_remote_on_tie=True).winner)
                else:
                    resolved.append(remote_event)
            events = resolved

        await self.store.replace_with_snapshot(events)
        self.app_state.set(LAST_SYNC_TIME_KEY, self.clock())
        log.debug(f"Applied realtime snapshot of {len(events)} event(s)")
        self._notify()

    # Queue

    async def drain_queue(self) -> DrainResult:
        result = await self.queue.drain(self._apply_operation)
        if result.next_retry_in is not None and self._started:
            self._schedule_drain(result.next_retry_in)
        return result

    def _schedule_drain(self, delay: float) -> None:
        current = asyncio.current_task()
        if self._retry_task is not None and not self._retry_task.done() and self._retry_task is not current:
            self._retry_task.cancel()
        self._retry_task = asyncio.create_task(self._drain_later(delay))

    async def _drain_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._retry_task is asyncio.current_task():
            self._retry_task = None
        if not self._online or not self._started:
            return
        try:
            await self.drain_queue()
        except Exception as e:
            log.error(f"Deferred queue drain failed: {e}", exc_info=True)
        self._notify()

    async def _apply_operation(self, operation: SyncOperation) -> None:
        payload = operation.payload
        event = Event.model_validate(payload) if payload else None

        if operation.type is OperationType.CREATE:
            await self.adapter.push_create(event)
        elif operation.type is OperationType.UPDATE:
            await self.adapter.push_update(operation.event_id, payload)
        elif operation.type is OperationType.ARCHIVE:
            await self.adapter.push_archive(operation.event_id)
        elif operation.type is OperationType.DELETE:
            await self.adapter.push_delete(operation.event_id)
        elif operation.type is OperationType.RESTORE:
            await self.adapter.push_restore(event)

        await self.store.mark_synced(operation.event_id, expected_updated_at=payload.get("updated_at"))

    async def propagate(self, op_type: OperationType, event: Event) -> None:
        """
        Send one local change towards the remote. The realtime backend is
        pushed directly when online and falls back to the queue on failure;
        the polling backend always goes through the queue.
        """
        if not self.adapter.is_configured:
            return

        payload = event.model_dump(mode="json")
        if self.is_realtime and self._online:
            try:
                await self._apply_operation(
                    SyncOperation(id=0, type=op_type, event_id=event.id, payload=payload, timestamp=self.clock())
                )
                return
            except SyncError as e:
                log.warning(f"Direct push of {op_type.value} {event.id} failed, queueing: {e}")

        await self.queue.enqueue(op_type, event.id, payload)
        self._kick()

    async def propagate_many(self, op_type: OperationType, events: List[Event]) -> None:
        if not self.adapter.is_configured or not events:
            return

        if op_type is OperationType.ARCHIVE and self.is_realtime and self._online:
            try:
                await self.adapter.push_batch_archive([e.id for e in events])
                for event in events:
                    await self.store.mark_synced(event.id, expected_updated_at=event.updated_at)
                return
            except SyncError as e:
                log.warning(f"Batch archive of {len(events)} event(s) failed, queueing: {e}")
            for event in events:
                await self.queue.enqueue(op_type, event.id, event.model_dump(mode="json"))
            self._kick()
            return

        for event in events:
            await self.propagate(op_type, event)

    def _kick(self) -> None:
        if self.auto_drain and self._online and self._started:
            self._schedule_drain(0)

    async def retry_failed(self) -> int:
        count = await self.queue.retry_failed()
        if count:
            self._kick()
        return count

    async def get_state(self) -> SyncState:
        return SyncState(
            status=SyncStatusKind.OFFLINE if not self._online else self._status,
            backend=self.adapter.kind.value,
            realtime_enabled=self.is_realtime,
            last_sync_time=self.app_state.get(LAST_SYNC_TIME_KEY),
            pending_operations=await self.queue.get_pending_count(),
            failed_operations=await self.queue.get_failed_count(),
            error=self._error,
            message=None if self.adapter.is_configured else LOCAL_ONLY_MESSAGE,
        )
