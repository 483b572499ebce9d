from fastapi.testclient import TestClient

from contraction_sync.config import Settings
from contraction_sync.main import create_app

from conftest import FakeDocumentStore

API = "/api/v1"


def test_health(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


def test_root(client: TestClient):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Contraction Sync API"


def test_start_stop_and_list(client: TestClient, clock):
    response = client.post(f"{API}/events/start")
    assert response.status_code == 201
    event = response.json()
    assert event["endTime"] is None

    clock.advance(62)
    response = client.post(f"{API}/events/stop", json={"intensity": 7})
    assert response.status_code == 200
    assert response.json()["duration"] == 62

    events = client.get(f"{API}/events/").json()
    assert [e["id"] for e in events] == [event["id"]]
    assert events[0]["syncStatus"] == "pending"


def test_second_start_is_422(client: TestClient):
    client.post(f"{API}/events/start")
    response = client.post(f"{API}/events/start")
    assert response.status_code == 422
    assert response.json()["detail"] == ["A contraction is already in progress"]


def test_unknown_event_is_404(client: TestClient):
    assert client.get(f"{API}/events/missing").status_code == 404
    assert client.delete(f"{API}/events/missing").status_code == 404


def test_manual_add_patch_and_stats(client: TestClient, clock):
    start = clock() - 600_000
    response = client.post(f"{API}/events/", json={"startTime": start, "endTime": start + 60_000})
    assert response.status_code == 201
    event_id = response.json()["id"]

    response = client.patch(f"{API}/events/{event_id}", json={"notes": "steady"})
    assert response.status_code == 200
    assert response.json()["notes"] == "steady"

    stats = client.get(f"{API}/events/stats").json()
    assert stats["total"] == 1
    assert stats["averageDuration"] == 60


def test_only_one_event_can_be_open(client: TestClient, clock):
    start = clock() - 600_000
    completed = client.post(f"{API}/events/", json={"startTime": start, "endTime": start + 60_000}).json()
    assert client.post(f"{API}/events/start").status_code == 201

    assert client.post(f"{API}/events/", json={"startTime": clock() - 1000}).status_code == 422
    assert client.patch(f"{API}/events/{completed['id']}", json={"endTime": None}).status_code == 422

    events = client.get(f"{API}/events/").json()
    assert len([e for e in events if e["endTime"] is None]) == 1


def test_archive_all_and_undo(client: TestClient, clock):
    for offset in (900, 600, 300):
        start = clock() - offset * 1000
        client.post(f"{API}/events/", json={"startTime": start, "endTime": start + 45_000})

    archived = client.post(f"{API}/events/archive-all").json()
    assert len(archived) == 3
    assert client.get(f"{API}/events/").json() == []

    history = client.get(f"{API}/history/").json()
    assert history["canUndo"] is True
    assert history["undoDescription"] == "Archive 3 contractions"

    entry = client.post(f"{API}/history/undo").json()
    assert entry["actionType"] == "archive_all"
    assert len(client.get(f"{API}/events/").json()) == 3
    assert client.get(f"{API}/history/").json()["canRedo"] is True


def test_sync_without_backend_is_409(client: TestClient):
    response = client.post(f"{API}/sync/run")
    assert response.status_code == 409

    status = client.get(f"{API}/sync/status").json()
    assert status["backend"] == "none"
    assert status["pendingOperations"] == 0


def test_connectivity(client: TestClient):
    response = client.post(f"{API}/sync/connectivity", json={"online": False})
    assert response.json()["status"] == "offline"
    response = client.post(f"{API}/sync/connectivity", json={"online": True})
    assert response.json()["status"] == "idle"


def test_invalid_share_link_is_422(client: TestClient):
    response = client.post(f"{API}/backend/share-link/apply", json={"url": "https://app.example.com/#nothing=1"})
    assert response.status_code == 422


def test_nothing_to_share_is_409(client: TestClient):
    response = client.get(f"{API}/backend/share-link", params={"baseUrl": "https://app.example.com/"})
    assert response.status_code == 409


def test_realtime_backend_via_share_link(clock):
    document_store = FakeDocumentStore()
    settings = Settings(database_url="sqlite://", sync_backend="none")
    app = create_app(settings, document_client_factory=lambda config: document_store, auto_drain=False, clock=clock)

    with TestClient(app) as client:
        response = client.post(f"{API}/backend/share-link/apply", json={"url": "https://app.example.com/t#userId=user-1"})
        assert response.status_code == 200
        assert response.json()["url"] == "https://app.example.com/t"
        assert client.get(f"{API}/backend/").json()["kind"] == "realtime"

        event = client.post(f"{API}/events/start").json()

        assert event["id"] in document_store.collections["users/user-1/events"]
        assert client.get(f"{API}/events/{event['id']}").json()["syncStatus"] == "synced"

        share = client.get(f"{API}/backend/share-link", params={"baseUrl": "https://app.example.com/t"}).json()
        assert share["url"] == "https://app.example.com/t#userId=user-1"


def test_realtime_without_client_is_409(client: TestClient):
    response = client.put(f"{API}/backend/", json={"kind": "realtime", "userId": "user-1"})
    assert response.status_code == 409
    assert client.get(f"{API}/backend/").json()["kind"] == "none"
