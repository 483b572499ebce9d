"""Durable FIFO of outbound mutations with bounded retry and backoff."""

import copy
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from contraction_sync.models.sync_operation import SyncOperation as DBSyncOperation
from contraction_sync.schemas.sync import DrainResult, OperationStatus, OperationType, SyncOperation
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)

MAX_RETRIES = 5
RETRY_DELAYS = (1.0, 2.0, 5.0, 10.0, 30.0)  # seconds, last value is the cap

ApplyFn = Callable[[SyncOperation], Awaitable[None]]


def _to_schema(row: DBSyncOperation) -> SyncOperation:
    return SyncOperation(
        id=row.id,
        type=row.type,
        event_id=row.event_id,
        payload=row.payload or {},
        timestamp=row.timestamp,
        retry_count=row.retry_count,
        status=row.status,
        next_attempt_at=row.next_attempt_at,
        last_error=row.last_error,
    )


class SyncQueue:
    """
    Outbound queue drained in enqueue order.

    A failed operation is not waited on: it is re-marked pending with a
    ``next_attempt_at`` in the future and the drain moves on. Later
    operations for the same event are held back until it succeeds or is
    marked failed, so one event's mutations never reach the remote out of
    order. The owner re-submits the drain when the earliest retry is due
    (see ``DrainResult.next_retry_in``).
    """

    def __init__(
        self,
        db: Session,
        max_retries: int = MAX_RETRIES,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        clock: Clock = now_ms,
    ):
        self.db = db
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays) or RETRY_DELAYS
        self.clock = clock
        self._processing = False
        self._rerun_requested = False

    @property
    def is_draining(self) -> bool:
        return self._processing

    def retry_delay(self, retry_count: int) -> float:
        """Backoff (seconds) before attempt number ``retry_count + 1``."""
        index = min(max(retry_count, 1), len(self.retry_delays)) - 1
        return self.retry_delays[index]

    async def enqueue(self, op_type: OperationType, event_id: str, payload: Optional[Dict[str, Any]] = None) -> SyncOperation:
        """Append a pending operation holding a private copy of ``payload``."""
        row = DBSyncOperation(
            type=OperationType(op_type).value,
            event_id=event_id,
            payload=copy.deepcopy(payload) if payload else {},
            timestamp=self.clock(),
            retry_count=0,
            status=OperationStatus.PENDING.value,
        )
        self.db.add(row)
        self.db.commit()
        log.debug(f"Queued {row.type} for event {event_id} (op #{row.id})")
        return _to_schema(row)

    async def drain(self, apply_fn: ApplyFn) -> DrainResult:
        """
        Push every due pending operation through ``apply_fn``.

        A call made while another drain is in flight returns immediately
        with ``skipped=True`` and makes the running drain take one more pass,
        so operations enqueued in the meantime are not left behind.
        """
        if self._processing:
            self._rerun_requested = True
            log.debug("Drain already in progress; another pass will follow")
            return DrainResult(skipped=True)

        self._processing = True
        result = DrainResult()
        try:
            self._rerun_requested = True
            while self._rerun_requested:
                self._rerun_requested = False
                result.held = 0
                await self._drain_pass(apply_fn, result)

            purged = await self.purge_completed()
            if purged:
                log.debug(f"Purged {purged} completed sync operation(s)")
            result.next_retry_in = await self.next_retry_in()
            return result
        finally:
            self._processing = False

    async def _drain_pass(self, apply_fn: ApplyFn, result: DrainResult) -> None:
        blocked_events: Set[str] = set()
        now = self.clock()
        rows = (
            self.db.query(DBSyncOperation)
            .filter(DBSyncOperation.status == OperationStatus.PENDING.value)
            .order_by(DBSyncOperation.id)
            .all()
        )

        for row in rows:
            if row.event_id in blocked_events:
                result.held += 1
                continue
            if row.next_attempt_at is not None and row.next_attempt_at > now:
                blocked_events.add(row.event_id)
                result.held += 1
                continue

            result.processed += 1
            row.status = OperationStatus.PROCESSING.value
            self.db.commit()
            operation = _to_schema(row)

            try:
                await apply_fn(operation)
            except Exception as e:
                row.retry_count += 1
                row.last_error = str(e)
                if row.retry_count >= self.max_retries:
                    row.status = OperationStatus.FAILED.value
                    row.next_attempt_at = None
                    result.failed += 1
                    log.error(
                        f"Sync operation #{row.id} ({row.type} {row.event_id}) failed permanently "
                        f"after {row.retry_count} attempts: {e}"
                    )
                else:
                    delay = self.retry_delay(row.retry_count)
                    row.status = OperationStatus.PENDING.value
                    row.next_attempt_at = self.clock() + int(delay * 1000)
                    blocked_events.add(row.event_id)
                    result.retried += 1
                    log.warning(
                        f"Sync operation #{row.id} ({row.type} {row.event_id}) failed "
                        f"(attempt {row.retry_count}/{self.max_retries}), retrying in {delay}s: {e}"
                    )
                self.db.commit()
                continue

            row.status = OperationStatus.COMPLETED.value
            row.last_error = None
            self.db.commit()
            result.completed += 1

    async def purge_completed(self) -> int:
        deleted = (
            self.db.query(DBSyncOperation)
            .filter(DBSyncOperation.status == OperationStatus.COMPLETED.value)
            .delete()
        )
        self.db.commit()
        return deleted

    async def next_retry_in(self) -> Optional[float]:
        """Seconds until the earliest deferred pending operation is due, if any."""
        row = (
            self.db.query(DBSyncOperation)
            .filter(
                DBSyncOperation.status == OperationStatus.PENDING.value,
                DBSyncOperation.next_attempt_at.isnot(None),
            )
            .order_by(DBSyncOperation.next_attempt_at)
            .first()
        )
        if row is None:
            return None
        return max(0.0, (row.next_attempt_at - self.clock()) / 1000)

    async def list_operations(self, status: Optional[OperationStatus] = None) -> List[SyncOperation]:
        query = self.db.query(DBSyncOperation)
        if status is not None:
            query = query.filter(DBSyncOperation.status == status.value)
        return [_to_schema(r) for r in query.order_by(DBSyncOperation.id).all()]

    async def get_pending_count(self) -> int:
        """Operations still owed to the remote; failed ones are excluded."""
        return (
            self.db.query(DBSyncOperation)
            .filter(DBSyncOperation.status.in_([OperationStatus.PENDING.value, OperationStatus.PROCESSING.value]))
            .count()
        )

    async def get_failed_count(self) -> int:
        return self.db.query(DBSyncOperation).filter(DBSyncOperation.status == OperationStatus.FAILED.value).count()

    async def outstanding_event_ids(self) -> Set[str]:
        """Events with a mutation that has not been confirmed by the remote."""
        rows = (
            self.db.query(DBSyncOperation.event_id)
            .filter(DBSyncOperation.status != OperationStatus.COMPLETED.value)
            .distinct()
            .all()
        )
        return {r[0] for r in rows}

    async def recover_interrupted(self) -> int:
        """Return operations left ``processing`` by an interrupted run to ``pending``."""
        count = (
            self.db.query(DBSyncOperation)
            .filter(DBSyncOperation.status == OperationStatus.PROCESSING.value)
            .update({DBSyncOperation.status: OperationStatus.PENDING.value})
        )
        self.db.commit()
        if count:
            log.info(f"Recovered {count} interrupted sync operation(s)")
        return count

    async def retry_failed(self) -> int:
        """User-requested: give failed operations a fresh round of attempts."""
        count = (
            self.db.query(DBSyncOperation)
            .filter(DBSyncOperation.status == OperationStatus.FAILED.value)
            .update(
                {
                    DBSyncOperation.status: OperationStatus.PENDING.value,
                    DBSyncOperation.retry_count: 0,
                    DBSyncOperation.next_attempt_at: None,
                },
            )
        )
        self.db.commit()
        if count:
            log.info(f"Re-queued {count} failed sync operation(s)")
        return count

    async def clear(self) -> None:
        self.db.query(DBSyncOperation).delete()
        self.db.commit()
