"""Minimal client surface the realtime adapter needs from a live document store."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

# (document id, document body)
Document = Tuple[str, Dict[str, Any]]
DocumentSnapshotHandler = Callable[[List[Document]], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


class DocumentStoreClient(ABC):
    """
    Per-collection document operations.

    ``set_document`` and ``update_document`` must resolve concurrent writes by
    keeping the body with the greater ``updatedAt``; on an exact tie the
    write received last by the server wins.
    """

    @abstractmethod
    async def set_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def update_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Merge ``data`` into an existing document; raises ``KeyError`` when it is missing."""
        pass

    @abstractmethod
    async def batch_update(self, path: str, updates: Dict[str, Dict[str, Any]]) -> None:
        """Apply several partial updates atomically."""
        pass

    @abstractmethod
    async def query(self, path: str, archived: Optional[bool] = None) -> List[Document]:
        pass

    @abstractmethod
    def listen(
        self,
        path: str,
        on_snapshot: DocumentSnapshotHandler,
        on_error: ErrorHandler,
        archived: Optional[bool] = None,
    ) -> Callable[[], None]:
        """Start delivering full snapshots of the collection; returns an unsubscribe callable."""
        pass

    async def close(self) -> None:
        pass
