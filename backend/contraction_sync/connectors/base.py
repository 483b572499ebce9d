from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List

from contraction_sync.schemas.backend import AdapterKind
from contraction_sync.schemas.event import Event

SnapshotHandler = Callable[[List[Event]], Awaitable[None]]
Unsubscribe = Callable[[], None]


class BaseSyncAdapter(ABC):
    """
    Uniform capability surface over every remote backend.

    Implementations raise ``BackendUnreachableError`` for network failures and
    timeouts and ``BackendRejectedError`` when the remote refuses a request.
    """

    kind: AdapterKind
    # Tie-break for last-write-wins merges against this backend's data.
    prefer_remote_on_tie: bool = False

    @property
    def is_configured(self) -> bool:
        return self.kind is not AdapterKind.PASSIVE

    @property
    def supports_subscribe(self) -> bool:
        return False

    @abstractmethod
    async def push_create(self, event: Event) -> None:
        """Upserts a new event on the remote, keyed by its id."""
        pass

    @abstractmethod
    async def push_update(self, event_id: str, fields: Dict[str, Any]) -> None:
        """Applies changed fields (or a full snapshot) to an existing remote event."""
        pass

    @abstractmethod
    async def push_archive(self, event_id: str) -> None:
        """Soft-deletes one remote event."""
        pass

    @abstractmethod
    async def push_batch_archive(self, event_ids: List[str]) -> None:
        """Soft-deletes several remote events in one request."""
        pass

    @abstractmethod
    async def pull_all(self, include_archived: bool = False) -> List[Event]:
        """Fetches every remote event."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Returns True when the remote answers."""
        pass

    async def push_restore(self, event: Event) -> None:
        """Brings an archived event back; an upsert by id unless the backend needs otherwise."""
        await self.push_create(event)

    async def push_delete(self, event_id: str) -> None:
        await self.push_archive(event_id)

    def subscribe(self, on_snapshot: SnapshotHandler) -> Unsubscribe:
        raise NotImplementedError(f"{type(self).__name__} does not deliver live updates")

    async def close(self) -> None:
        pass
