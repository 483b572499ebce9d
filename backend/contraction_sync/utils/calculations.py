"""Derived statistics over recorded events."""

from typing import List, Optional

from contraction_sync.schemas.event import Event, EventStats, calculate_duration
from contraction_sync.utils.timeutil import now_ms

__all__ = [
    "calculate_duration",
    "calculate_interval",
    "calculate_stats",
    "events_in_time_range",
    "is_active_labor_pattern",
]


def calculate_interval(earlier: Event, later: Event) -> int:
    """Seconds from the end of ``earlier`` to the start of ``later`` (0 if ``earlier`` is active)."""
    if earlier.end_time is None:
        return 0
    return (later.start_time - earlier.end_time) // 1000


def calculate_stats(events: List[Event]) -> EventStats:
    """
    Averages over completed events. ``events`` must be ordered newest first,
    as returned by ``EventStore.list_active``.
    """
    completed = [e for e in events if e.end_time is not None and e.duration is not None]
    if not completed:
        return EventStats()

    average_duration = sum(e.duration for e in completed) // len(completed)

    intervals = []
    for newer, older in zip(completed, completed[1:]):
        interval = calculate_interval(older, newer)
        if interval > 0:
            intervals.append(interval)
    average_interval = sum(intervals) // len(intervals) if intervals else 0

    return EventStats(
        total=len(completed),
        average_duration=average_duration,
        average_interval=average_interval,
        last_event=completed[0],
        recent_events=completed[:10],
        active_labor_pattern=is_active_labor_pattern(completed),
    )


def events_in_time_range(events: List[Event], hours: float, now: Optional[int] = None) -> List[Event]:
    cutoff = (now if now is not None else now_ms()) - int(hours * 60 * 60 * 1000)
    return [e for e in events if e.start_time >= cutoff]


def is_active_labor_pattern(events: List[Event]) -> bool:
    """
    Active labor: the three most recent contractions last 45-90s and are
    3-5 minutes apart.
    """
    recent = events[:3]
    if len(recent) < 3:
        return False
    if not all(e.duration is not None and 45 <= e.duration <= 90 for e in recent):
        return False

    valid_intervals = 0
    for newer, older in zip(recent, recent[1:]):
        if 180 <= calculate_interval(older, newer) <= 300:
            valid_intervals += 1
    return valid_intervals >= 2
