"""
Last-write-wins reconciliation of local and remote event versions.

Everything here is pure: inputs are never mutated and the output only
depends on the arguments, so merges are deterministic, idempotent and
associative.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List

from pydantic import BaseModel

from contraction_sync.errors import ConflictExhaustionError
from contraction_sync.schemas.event import Event, SyncStatus

log = logging.getLogger(__name__)


class ResolutionStrategy(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class ConflictResolution(BaseModel):
    local: Event
    remote: Event
    winner: Event
    strategy: ResolutionStrategy


def resolve_conflict(local: Event, remote: Event, prefer_remote_on_tie: bool = False) -> ConflictResolution:
    """
    Pick the version with the greater ``updated_at``.

    On an exact tie ``prefer_remote_on_tie`` decides: realtime backends pass
    True (the server clock is authoritative), passive/manual merges pass False.
    """
    if local.id != remote.id:
        raise ConflictExhaustionError(f"Cannot resolve versions of different events: {local.id} vs {remote.id}")

    if local.updated_at > remote.updated_at:
        strategy = ResolutionStrategy.LOCAL
    elif remote.updated_at > local.updated_at:
        strategy = ResolutionStrategy.REMOTE
    else:
        strategy = ResolutionStrategy.REMOTE if prefer_remote_on_tie else ResolutionStrategy.LOCAL

    winner = local if strategy is ResolutionStrategy.LOCAL else remote
    return ConflictResolution(local=local, remote=remote, winner=winner, strategy=strategy)


def _sort_key(event: Event):
    return (event.start_time, event.id)


def merge_collections(
    local: Iterable[Event],
    remote: Iterable[Event],
    prefer_remote_on_tie: bool = False,
) -> List[Event]:
    """
    Merge two event collections by id.

    Local events seed the result; every remote event is either inserted or
    resolved against its local counterpart, and the result is tagged synced.
    Output is ordered by ``start_time`` descending (id breaks ties so the
    order is stable regardless of input order).
    """
    merged: Dict[str, Event] = {event.id: event for event in local}
    inserted = 0
    remote_wins = 0

    for remote_event in remote:
        local_event = merged.get(remote_event.id)
        if local_event is None:
            merged[remote_event.id] = remote_event.model_copy(update={"sync_status": SyncStatus.SYNCED})
            inserted += 1
            continue

        resolution = resolve_conflict(local_event, remote_event, prefer_remote_on_tie)
        if resolution.strategy is ResolutionStrategy.REMOTE and local_event != remote_event:
            remote_wins += 1
        merged[remote_event.id] = resolution.winner.model_copy(update={"sync_status": SyncStatus.SYNCED})

    log.debug(f"Merged collections: {len(merged)} total, {inserted} new from remote, {remote_wins} remote wins")
    return sorted(merged.values(), key=_sort_key, reverse=True)
