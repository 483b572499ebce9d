import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from contraction_sync.connectors.base import BaseSyncAdapter, SnapshotHandler, Unsubscribe
from contraction_sync.connectors.document_store import Document, DocumentStoreClient
from contraction_sync.errors import BackendRejectedError, BackendUnreachableError, SyncError
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.schemas.event import Event
from contraction_sync.services.normalizer import NormalizerService

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

T = TypeVar("T")


class RealtimeAdapter(BaseSyncAdapter):
    """
    Backend over a live document store, one collection per user at
    ``users/{user_id}/events``. The store merges concurrent writes by
    ``updatedAt`` itself and pushes full snapshots to subscribers.
    """

    kind = AdapterKind.REALTIME
    # Server clock is authoritative on ties.
    prefer_remote_on_tie = True

    def __init__(
        self,
        config: BackendConfig,
        client: DocumentStoreClient,
        timeout: float = DEFAULT_TIMEOUT,
        normalizer: Optional[NormalizerService] = None,
    ):
        if not config.user_id:
            raise ValueError("Realtime adapter requires a user_id")
        self.config = config
        self.client = client
        self.timeout = timeout
        self.normalizer = normalizer or NormalizerService()
        self.collection_path = f"users/{config.user_id}/events"
        self._unsubscribers: List[Unsubscribe] = []

        log.info(f"Realtime adapter initialized for {self.collection_path}")

    @property
    def supports_subscribe(self) -> bool:
        return True

    async def _call(self, action: str, call: Awaitable[T]) -> T:
        """Run one store call under the request timeout, mapping failures to sync errors."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            error_msg = f"Document store timed out during {action} after {self.timeout}s"
            log.error(error_msg)
            raise BackendUnreachableError(error_msg) from e
        except SyncError:
            raise
        except (KeyError, ValueError, PermissionError) as e:
            error_msg = f"Document store rejected {action}: {e}"
            log.error(error_msg)
            raise BackendRejectedError(error_msg) from e
        except (ConnectionError, OSError) as e:
            error_msg = f"Document store unreachable during {action}: {e}"
            log.error(error_msg)
            raise BackendUnreachableError(error_msg) from e

    def _to_events(self, documents: List[Document]) -> List[Event]:
        events = []
        for doc_id, data in documents:
            try:
                events.append(self.normalizer.document_to_event(doc_id, data))
            except (KeyError, ValueError) as e:
                log.warning(f"Skipping malformed document {doc_id}: {e}")
        return events

    async def push_create(self, event: Event) -> None:
        await self._call(
            "create",
            self.client.set_document(self.collection_path, event.id, self.normalizer.event_to_document(event)),
        )

    async def push_update(self, event_id: str, fields: Dict[str, Any]) -> None:
        doc = self.normalizer.fields_to_document(fields)
        if not doc:
            return
        await self._call("update", self.client.update_document(self.collection_path, event_id, doc))

    async def push_archive(self, event_id: str) -> None:
        await self.push_batch_archive([event_id])

    async def push_batch_archive(self, event_ids: List[str]) -> None:
        if not event_ids:
            return
        now = self.normalizer.clock() if self.normalizer.clock else None
        updates = {}
        for event_id in event_ids:
            body: Dict[str, Any] = {"archived": True}
            if now is not None:
                body["updatedAt"] = now
            updates[event_id] = body
        await self._call("batch archive", self.client.batch_update(self.collection_path, updates))

    async def pull_all(self, include_archived: bool = False) -> List[Event]:
        archived = None if include_archived else False
        documents = await self._call("query", self.client.query(self.collection_path, archived=archived))
        events = self._to_events(documents)
        log.info(f"Received {len(events)} event(s) from {self.collection_path}")
        return events

    def subscribe(self, on_snapshot: SnapshotHandler) -> Unsubscribe:
        """
        Deliver every pushed snapshot (archived events included) as events.

        Errors on the channel are logged and the subscription is left open;
        the store client is responsible for reconnecting.
        """

        async def handle(documents: List[Document]) -> None:
            await on_snapshot(self._to_events(documents))

        def handle_error(error: Exception) -> None:
            log.error(f"Realtime subscription error on {self.collection_path}: {error}")

        stop = self.client.listen(self.collection_path, handle, handle_error)
        state = {"active": True}

        def unsubscribe() -> None:
            if not state["active"]:
                return
            state["active"] = False
            try:
                stop()
            except Exception as e:
                log.debug(f"Ignoring error while unsubscribing from {self.collection_path}: {e}")
            if unsubscribe in self._unsubscribers:
                self._unsubscribers.remove(unsubscribe)

        self._unsubscribers.append(unsubscribe)
        log.info(f"Subscribed to {self.collection_path}")
        return unsubscribe

    async def test_connection(self) -> bool:
        try:
            await self._call("test", self.client.query(self.collection_path, archived=False))
            return True
        except SyncError as e:
            log.warning(f"Realtime connection test failed: {e}")
            return False

    async def close(self) -> None:
        for unsubscribe in list(self._unsubscribers):
            unsubscribe()
        await self.client.close()
