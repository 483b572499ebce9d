import pytest

from contraction_sync.errors import ValidationError
from contraction_sync.schemas.event import Event, SyncStatus
from contraction_sync.utils.validation import ensure_valid, parse_intensity, validate_event

from conftest import BASE_TIME


def test_duration_derived_from_end_time():
    event = Event(start_time=1_000, end_time=63_500, created_at=1_000, updated_at=63_500)
    assert event.duration == 62


def test_active_event_has_no_duration():
    event = Event(start_time=1_000, created_at=1_000, updated_at=1_000, duration=30)
    assert event.is_active
    assert event.duration is None


def test_with_changes_rederives_duration():
    event = Event(start_time=0, end_time=10_000, created_at=0, updated_at=10_000)
    changed = event.with_changes(end_time=45_000)
    assert changed.duration == 45
    assert event.duration == 10


def test_camel_case_wire_names():
    event = Event.model_validate({"id": "a", "startTime": 5, "createdAt": 5, "updatedAt": 5})
    dumped = event.model_dump(by_alias=True)
    assert dumped["startTime"] == 5
    assert dumped["syncStatus"] == SyncStatus.PENDING


def test_content_excludes_bookkeeping():
    event = Event(id="a", start_time=0, created_at=0, updated_at=0)
    assert "sync_status" not in event.content()
    assert "updated_at" not in event.content()
    assert event.content()["id"] == "a"


class TestValidation:
    def test_valid_event(self):
        event = Event(start_time=BASE_TIME - 60_000, end_time=BASE_TIME, created_at=BASE_TIME, updated_at=BASE_TIME)
        assert validate_event(event, BASE_TIME) == []

    def test_future_start_rejected(self):
        event = Event(start_time=BASE_TIME + 1, created_at=BASE_TIME, updated_at=BASE_TIME)
        assert "Start time cannot be in the future" in validate_event(event, BASE_TIME)

    def test_end_before_start_rejected(self):
        event = Event(start_time=BASE_TIME - 1_000, end_time=BASE_TIME - 2_000, created_at=0, updated_at=0)
        assert "End time must be after start time" in validate_event(event, BASE_TIME)

    def test_intensity_range(self):
        event = Event(start_time=0, intensity=11, created_at=0, updated_at=0)
        with pytest.raises(ValidationError) as exc:
            ensure_valid(event, BASE_TIME)
        assert exc.value.errors == ["Intensity must be between 1 and 10"]

    def test_updated_before_created_rejected(self):
        event = Event(start_time=0, created_at=10, updated_at=5)
        assert "updatedAt cannot be earlier than createdAt" in validate_event(event, BASE_TIME)

    def test_long_duration_only_warns(self, caplog):
        event = Event(start_time=0, end_time=700_000, created_at=0, updated_at=700_000)
        assert validate_event(event, BASE_TIME) == []
        assert "unusually long" in caplog.text

    @pytest.mark.parametrize("raw,expected", [("7", 7), ("", None), (None, None), ("abc", None), ("4.0", 4)])
    def test_parse_intensity(self, raw, expected):
        assert parse_intensity(raw) == expected
