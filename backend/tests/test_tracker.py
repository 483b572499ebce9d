import pytest

from contraction_sync.connectors.passive_adapter import PassiveAdapter
from contraction_sync.errors import NotFoundError, ValidationError
from contraction_sync.schemas.history import HistoryActionType
from contraction_sync.services.sync_orchestrator import SyncOrchestrator
from contraction_sync.services.tracker import EventTracker


@pytest.fixture
def tracker(store, queue, app_state, history, clock):
    orchestrator = SyncOrchestrator(PassiveAdapter(), store, queue, app_state, clock=clock)
    history.propagator = orchestrator
    return EventTracker(store, history, orchestrator, clock=clock)


@pytest.mark.asyncio
class TestEventTracker:
    async def test_start_and_stop(self, tracker, clock):
        started = await tracker.start_event()
        assert started.is_active

        clock.advance(62)
        stopped = await tracker.stop_event(intensity=6)

        assert stopped.id == started.id
        assert stopped.duration == 62
        assert stopped.intensity == 6
        assert await tracker.get_active() is None

    async def test_second_start_rejected(self, tracker):
        await tracker.start_event()
        with pytest.raises(ValidationError):
            await tracker.start_event()

    async def test_stop_without_active_rejected(self, tracker):
        with pytest.raises(ValidationError):
            await tracker.stop_event()

    async def test_undo_stop_resumes_event(self, tracker, clock):
        await tracker.start_event()
        clock.advance(30)
        await tracker.stop_event()

        entry = await tracker.undo()

        assert entry.action_type is HistoryActionType.UPDATE
        assert (await tracker.get_active()) is not None

    async def test_add_event_manually(self, tracker, clock):
        start = clock() - 600_000
        event = await tracker.add_event(start_time=start, end_time=start + 45_000, intensity=4)
        assert event.duration == 45
        assert [e.id for e in await tracker.list_events()] == [event.id]

    async def test_add_event_in_future_rejected(self, tracker, clock):
        with pytest.raises(ValidationError):
            await tracker.add_event(start_time=clock() + 60_000, end_time=clock() + 120_000)

    async def test_add_event_without_end_rejected(self, tracker, clock):
        await tracker.start_event()
        with pytest.raises(ValidationError):
            await tracker.add_event(start_time=clock() - 1000, end_time=None)
        assert len([e for e in await tracker.list_events() if e.is_active]) == 1

    async def test_completed_event_cannot_be_reopened(self, tracker, clock):
        start = clock() - 600_000
        event = await tracker.add_event(start_time=start, end_time=start + 60_000)
        await tracker.start_event()

        with pytest.raises(ValidationError):
            await tracker.update_event(event.id, {"end_time": None})

        assert (await tracker.get_event(event.id)).end_time == start + 60_000
        assert len([e for e in await tracker.list_events() if e.is_active]) == 1
        assert tracker.history_state().entries[-1].description == "Start contraction"

    async def test_delete_then_undo(self, tracker, clock):
        start = clock() - 600_000
        event = await tracker.add_event(start_time=start, end_time=start + 60_000)

        await tracker.delete_event(event.id)
        assert await tracker.list_events() == []
        assert [e.id for e in await tracker.list_events(archived=True)] == [event.id]

        await tracker.undo()
        assert [e.id for e in await tracker.list_events()] == [event.id]

    async def test_delete_unknown_event(self, tracker):
        with pytest.raises(NotFoundError):
            await tracker.delete_event("missing")

    async def test_archive_all_of_three_then_undo(self, tracker, clock):
        for n in range(3):
            start = clock() - (900 - n * 200) * 1000
            await tracker.add_event(start_time=start, end_time=start + 60_000)

        archived = await tracker.archive_all()
        assert len(archived) == 3
        assert await tracker.list_events() == []
        state = tracker.history_state()
        assert state.entries[-1].action_type is HistoryActionType.ARCHIVE_ALL
        assert len(state.entries[-1].previous_states) == 3

        await tracker.undo()

        active = await tracker.list_events()
        assert len(active) == 3
        assert all(not e.archived for e in active)

    async def test_edit_then_undo_redo(self, tracker, clock):
        start = clock() - 600_000
        event = await tracker.add_event(start_time=start, end_time=start + 60_000, notes="before")
        clock.advance(1)
        await tracker.update_event(event.id, {"notes": "after"})

        await tracker.undo()
        assert (await tracker.get_event(event.id)).notes == "before"
        await tracker.redo()
        assert (await tracker.get_event(event.id)).notes == "after"

    async def test_listeners_notified(self, tracker):
        notifications = []
        remove = tracker.add_listener(lambda: notifications.append("changed"))

        await tracker.start_event()
        remove()
        await tracker.stop_event()

        assert notifications == ["changed"]

    async def test_stats(self, tracker, clock):
        for offset in (900, 600, 300):
            start = clock() - offset * 1000
            await tracker.add_event(start_time=start, end_time=start + 60_000)

        stats = await tracker.stats()

        assert stats.total == 3
        assert stats.average_duration == 60
        assert stats.average_interval == 240
