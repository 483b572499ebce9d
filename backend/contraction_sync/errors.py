"""Error taxonomy shared by the store, queue, adapters and history."""

from typing import List, Optional


class SyncError(Exception):
    """Base class for all domain errors raised by the engine."""


class ValidationError(SyncError, ValueError):
    """Malformed event fields (bad timestamps, out-of-range intensity...)."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid event")


class NotFoundError(SyncError, LookupError):
    """Operation on an unknown event id."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class BackendUnconfiguredError(SyncError):
    """Sync attempted while no remote backend is active."""


class BackendUnreachableError(SyncError):
    """Network failure or timeout talking to the remote backend."""


class BackendRejectedError(SyncError):
    """The remote answered but refused the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ConflictExhaustionError(SyncError):
    """An adapter broke the merge invariants (no deterministic winner)."""
