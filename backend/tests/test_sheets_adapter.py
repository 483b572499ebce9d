import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from contraction_sync.connectors.sheets_adapter import SheetsAdapter
from contraction_sync.errors import BackendRejectedError, BackendUnreachableError
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.schemas.event import Event, SyncStatus
from contraction_sync.services.normalizer import DELETED_SENTINEL, NormalizerService

SCRIPT_URL = "https://script.example.com/macros/s/abc/exec"


def _response(body, status_code=200):
    return httpx.Response(status_code, json=body, request=httpx.Request("GET", SCRIPT_URL))


def _record(event_id, start, end=None, deleted=""):
    return {
        "sheetRowId": 0,
        "id": event_id,
        "startTime": start,
        "endTime": end if end is not None else "",
        "duration": "",
        "intensity": "5",
        "notes": "",
        "createdAt": start,
        "updatedAt": end or start,
        "deleted": deleted,
    }


def _event(event_id="a", start=1_000_000):
    return Event(id=event_id, start_time=start, end_time=start + 60_000, created_at=start, updated_at=start + 60_000)


@pytest.fixture
def adapter():
    config = BackendConfig(kind=AdapterKind.POLLING, script_url=SCRIPT_URL, sheet_name="Labor")
    return SheetsAdapter(config, timeout=5.0)


def _sent_data(call):
    return json.loads(call.kwargs["data"]["data"])


@pytest.mark.asyncio
class TestSheetsAdapter:
    async def test_pull_all_skips_deleted_and_blank_rows(self, adapter):
        records = [
            dict(_record("a", 1_000, 61_000), sheetRowId=2),
            dict(_record("b", 2_000, 62_000, deleted=DELETED_SENTINEL), sheetRowId=3),
            dict(_record("", 3_000), sheetRowId=4),
        ]
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": True, "data": records}))) as mock_request:
            events = await adapter.pull_all()

        assert [e.id for e in events] == ["a"]
        assert events[0].duration == 60
        assert events[0].intensity == 5
        assert events[0].sync_status is SyncStatus.SYNCED
        assert adapter._row_index == {"a": 2}
        args = mock_request.call_args
        assert args.args[0] == "GET"
        assert args.kwargs["params"] == {"action": "getAll", "sheetName": "Labor"}

    async def test_pull_all_tolerates_invalid_row_id(self, adapter):
        records = [dict(_record("a", 1_000, 61_000), sheetRowId="row-two"), dict(_record("b", 2_000, 62_000), sheetRowId=3)]
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": True, "data": records}))):
            events = await adapter.pull_all()

        assert {e.id for e in events} == {"a", "b"}
        assert adapter._row_index == {"b": 3}

    async def test_push_create_appends_row(self, adapter):
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": True}))) as mock_request:
            await adapter.push_create(_event("a"))

        call = mock_request.call_args
        assert call.args[0] == "POST"
        assert call.kwargs["params"]["action"] == "append"
        [row] = _sent_data(call)["rows"]
        assert row[0] == "a"
        assert row[3] == "60"
        assert len(row) == 9

    async def test_push_update_rewrites_known_row(self, adapter):
        adapter._row_index = {"a": 7}
        event = _event("a").with_changes(notes="edited")
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": True}))) as mock_request:
            await adapter.push_update("a", event.model_dump(mode="json"))

        data = _sent_data(mock_request.call_args)
        assert mock_request.call_args.kwargs["params"]["action"] == "update"
        assert data["rowIndex"] == 7
        assert data["row"][5] == "edited"

    async def test_push_update_appends_unknown_row(self, adapter):
        responses = [_response({"success": True, "data": []}), _response({"success": True})]
        with patch.object(adapter.client, "request", new=AsyncMock(side_effect=responses)) as mock_request:
            await adapter.push_update("a", _event("a").model_dump(mode="json"))

        actions = [c.kwargs["params"]["action"] for c in mock_request.call_args_list]
        assert actions == ["getAll", "append"]

    async def test_batch_archive_by_id(self, adapter):
        adapter._row_index = {"a": 2, "b": 3}
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": True}))) as mock_request:
            await adapter.push_batch_archive(["a", "b"])

        assert mock_request.call_args.kwargs["params"]["action"] == "archiveAll"
        assert _sent_data(mock_request.call_args) == {"contractionIds": ["a", "b"]}
        assert adapter._row_index == {}

    async def test_push_delete_marks_row(self, adapter):
        adapter._row_index = {"a": 4}
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": True}))) as mock_request:
            await adapter.push_delete("a")

        assert mock_request.call_args.kwargs["params"] == {"action": "delete", "sheetName": "Labor", "rowIndex": "4"}

    async def test_unsuccessful_body_is_rejected(self, adapter):
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"success": False, "error": "Sheet not found"}))):
            with pytest.raises(BackendRejectedError, match="Sheet not found"):
                await adapter.pull_all()

    async def test_http_error_is_rejected(self, adapter):
        with patch.object(adapter.client, "request", new=AsyncMock(return_value=_response({"error": "nope"}, status_code=403))):
            with pytest.raises(BackendRejectedError) as exc:
                await adapter.pull_all()
        assert exc.value.status_code == 403

    async def test_timeout_is_unreachable(self, adapter):
        with patch.object(adapter.client, "request", new=AsyncMock(side_effect=httpx.ReadTimeout("timed out"))):
            with pytest.raises(BackendUnreachableError):
                await adapter.push_create(_event("a"))

    async def test_connection_error_is_unreachable(self, adapter):
        with patch.object(adapter.client, "request", new=AsyncMock(side_effect=httpx.ConnectError("refused"))):
            assert await adapter.test_connection() is False


class TestSheetRows:
    def test_row_round_trip(self):
        normalizer = NormalizerService()
        event = _event("a").with_changes(intensity=7, notes="long one")
        parsed = normalizer.sheet_row_to_event(normalizer.event_to_sheet_row(event))
        assert parsed.content() == event.content()

    def test_iso_dates_are_accepted(self):
        normalizer = NormalizerService()
        parsed = normalizer.sheet_record_to_event(
            {"id": "a", "startTime": "2024-01-01T10:00:00.000Z", "endTime": "2024-01-01T10:01:00.000Z"}
        )
        assert parsed.duration == 60

    def test_deleted_sentinel_row_skipped(self):
        normalizer = NormalizerService()
        row = normalizer.event_to_sheet_row(_event("a"))
        row[-1] = DELETED_SENTINEL
        assert normalizer.sheet_row_to_event(row) is None
