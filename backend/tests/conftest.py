from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from contraction_sync.config import Settings
from contraction_sync.connectors.base import BaseSyncAdapter
from contraction_sync.connectors.document_store import DocumentStoreClient
from contraction_sync.database import create_db_engine, create_session_factory, init_db
from contraction_sync.errors import BackendUnreachableError
from contraction_sync.main import create_app
from contraction_sync.schemas.backend import AdapterKind
from contraction_sync.schemas.event import Event
from contraction_sync.services.app_state import AppStateService
from contraction_sync.services.event_store import EventStore
from contraction_sync.services.history_manager import HistoryManager
from contraction_sync.services.sync_queue import SyncQueue

BASE_TIME = 1_700_000_000_000


class FakeClock:
    """Deterministic epoch-ms clock; advance it explicitly."""

    def __init__(self, now: int = BASE_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> int:
        self.now += int(seconds * 1000)
        return self.now


class FakeDocumentStore(DocumentStoreClient):
    """In-memory document store that merges writes by ``updatedAt`` like the real server."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.listeners: List[Any] = []
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []
        self.closed = False

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def _accept(self, existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]) -> bool:
        if existing is None or "updatedAt" not in incoming:
            return True
        return incoming["updatedAt"] >= existing.get("updatedAt", 0)

    async def set_document(self, path, doc_id, data):
        self._check("set_document")
        docs = self.collections.setdefault(path, {})
        if self._accept(docs.get(doc_id), data):
            docs[doc_id] = dict(data)

    async def update_document(self, path, doc_id, data):
        self._check("update_document")
        docs = self.collections.setdefault(path, {})
        if doc_id not in docs:
            raise KeyError(doc_id)
        if self._accept(docs[doc_id], data):
            docs[doc_id].update(data)

    async def batch_update(self, path, updates):
        self._check("batch_update")
        docs = self.collections.setdefault(path, {})
        missing = [doc_id for doc_id in updates if doc_id not in docs]
        if missing:
            raise KeyError(missing[0])
        for doc_id, data in updates.items():
            if self._accept(docs[doc_id], data):
                docs[doc_id].update(data)

    async def query(self, path, archived=None):
        self._check("query")
        docs = self.collections.get(path, {})
        return [
            (doc_id, dict(data))
            for doc_id, data in docs.items()
            if archived is None or bool(data.get("archived", False)) == archived
        ]

    def listen(self, path, on_snapshot, on_error, archived=None):
        entry = (path, on_snapshot, on_error)
        self.listeners.append(entry)

        def unsubscribe():
            self.listeners.remove(entry)

        return unsubscribe

    async def emit(self, path: str) -> None:
        """Push the current collection to every listener of ``path``."""
        documents = [(doc_id, dict(data)) for doc_id, data in self.collections.get(path, {}).items()]
        for listener_path, on_snapshot, _ in list(self.listeners):
            if listener_path == path:
                await on_snapshot(documents)

    def emit_error(self, error: Exception) -> None:
        for _, _, on_error in list(self.listeners):
            on_error(error)

    async def close(self):
        self.closed = True


class FakePollingAdapter(BaseSyncAdapter):
    """In-memory spreadsheet backend; event ids in ``failing`` raise on push."""

    kind = AdapterKind.POLLING

    def __init__(self):
        self.remote = {}
        self.failing = set()
        self.calls = []
        self.closed = False

    def _check(self, action, event_id):
        self.calls.append((action, event_id))
        if event_id in self.failing:
            raise BackendUnreachableError(f"cannot reach remote for {event_id}")

    async def push_create(self, event):
        self._check("create", event.id)
        self.remote[event.id] = event

    async def push_update(self, event_id, fields):
        self._check("update", event_id)
        self.remote[event_id] = self.remote[event_id].with_changes(
            **{k: v for k, v in fields.items() if k in ("end_time", "intensity", "notes", "updated_at")}
        )

    async def push_archive(self, event_id):
        self._check("archive", event_id)
        self.remote.pop(event_id, None)

    async def push_batch_archive(self, event_ids):
        for event_id in event_ids:
            await self.push_archive(event_id)

    async def pull_all(self, include_archived=False):
        self.calls.append(("pull", None))
        return list(self.remote.values())

    async def test_connection(self):
        return True

    async def close(self):
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def store(db, clock) -> EventStore:
    return EventStore(db, clock=clock)


@pytest.fixture
def queue(db, clock) -> SyncQueue:
    return SyncQueue(db, clock=clock)


@pytest.fixture
def app_state(db) -> AppStateService:
    return AppStateService(db)


@pytest.fixture
def history(db, store, clock) -> HistoryManager:
    return HistoryManager(db, store, clock=clock)


@pytest.fixture
def document_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def make_event(clock):
    """Build a completed event that started ``ago`` seconds before the clock."""

    def _make(
        ago: float = 600,
        duration: Optional[float] = 60,
        event_id: Optional[str] = None,
        updated_offset: float = 0,
        **fields: Any,
    ) -> Event:
        start = clock() - int(ago * 1000)
        end = start + int(duration * 1000) if duration is not None else None
        data: Dict[str, Any] = {
            "start_time": start,
            "end_time": end,
            "created_at": start,
            "updated_at": (end or start) + int(updated_offset * 1000),
        }
        if event_id is not None:
            data["id"] = event_id
        data.update(fields)
        return Event(**data)

    return _make


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_url="sqlite://", sync_backend="none", log_level="INFO")


@pytest.fixture
def client(test_settings, clock) -> TestClient:
    app = create_app(test_settings, auto_drain=False, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
