"""Field validation for locally created or edited events."""

import logging
from typing import List, Optional

from contraction_sync.errors import ValidationError
from contraction_sync.schemas.event import Event

log = logging.getLogger(__name__)

MAX_REASONABLE_DURATION_SEC = 600


def validate_event(event: Event, now: int) -> List[str]:
    """
    Collect every problem with ``event``; an empty list means it is valid.

    ``now`` is the local clock in epoch ms; user-entered instants may not lie
    in the future.
    """
    errors: List[str] = []

    if not event.id:
        errors.append("Event must have an ID")

    if event.start_time is None or event.start_time < 0:
        errors.append("Event must have a start time")
    elif event.start_time > now:
        errors.append("Start time cannot be in the future")

    if event.end_time is not None:
        if event.end_time < event.start_time:
            errors.append("End time must be after start time")
        if event.end_time > now:
            errors.append("End time cannot be in the future")

    if event.intensity is not None and not 1 <= event.intensity <= 10:
        errors.append("Intensity must be between 1 and 10")

    if event.updated_at < event.created_at:
        errors.append("updatedAt cannot be earlier than createdAt")

    if event.duration is not None and event.duration > MAX_REASONABLE_DURATION_SEC:
        log.warning(f"Event {event.id} has an unusually long duration ({event.duration}s)")

    return errors


def ensure_valid(event: Event, now: int) -> Event:
    errors = validate_event(event, now)
    if errors:
        raise ValidationError(errors)
    return event


def parse_intensity(value: Optional[str]) -> Optional[int]:
    """Lenient parse used for remote rows; blank or garbage becomes None."""
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
