import pytest

from contraction_sync.connectors.realtime_adapter import RealtimeAdapter
from contraction_sync.errors import BackendUnreachableError
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.schemas.event import SyncStatus
from contraction_sync.services.migration import MigrationService

from conftest import FakePollingAdapter


@pytest.fixture
def target(document_store):
    return RealtimeAdapter(BackendConfig(kind=AdapterKind.REALTIME, user_id="user-1"), document_store)


@pytest.mark.asyncio
class TestMigration:
    async def test_merges_source_and_local_into_target(self, store, target, make_event):
        source = FakePollingAdapter()
        source.remote["shared"] = make_event(event_id="shared", ago=900, notes="sheet", updated_offset=10)
        source.remote["sheet-only"] = make_event(event_id="sheet-only", ago=600)
        await store.create(make_event(event_id="shared", ago=900, notes="local"))
        await store.create(make_event(event_id="local-only", ago=300))
        progress = []

        result = await MigrationService(source, target, store, batch_size=2, on_progress=progress.append).migrate()

        assert result.success
        assert result.migrated == 3
        assert result.verified == 3
        assert progress[-1] == "Migration completed successfully"
        stored = {e.id: e for e in await store.list_all()}
        assert stored["shared"].notes == "sheet"
        assert all(e.sync_status is SyncStatus.SYNCED for e in stored.values())

    async def test_unreadable_source_still_migrates_local(self, store, target, make_event):
        source = FakePollingAdapter()

        async def broken_pull(include_archived=False):
            raise BackendUnreachableError("sheet offline")

        source.pull_all = broken_pull
        await store.create(make_event(event_id="local-only"))

        result = await MigrationService(source, target, store).migrate()

        assert result.migrated == 1
        assert result.success is False
        assert "sheet offline" in result.errors[0]
