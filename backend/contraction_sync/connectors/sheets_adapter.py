import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from contraction_sync.connectors.base import BaseSyncAdapter
from contraction_sync.errors import BackendRejectedError, BackendUnreachableError
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.schemas.event import Event
from contraction_sync.services.normalizer import NormalizerService

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class SheetsAdapter(BaseSyncAdapter):
    """
    Polling backend talking to a spreadsheet through a script proxy.

    Every request carries ``action`` and ``sheetName`` as query parameters;
    write payloads travel as a JSON string in the ``data`` form field. The
    proxy answers ``{success, data?, message?, error?}``.

    Sheet row numbers are tracked privately here and never leak into
    ``Event``. Archiving moves rows to another sheet, which shifts the row
    numbers below it, so the row cache is dropped after every archive.
    """

    kind = AdapterKind.POLLING
    prefer_remote_on_tie = False

    def __init__(
        self,
        config: BackendConfig,
        timeout: float = DEFAULT_TIMEOUT,
        normalizer: Optional[NormalizerService] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not config.script_url:
            raise ValueError("Sheets adapter requires a script_url")
        self.config = config
        self.script_url = config.script_url.strip()
        self.sheet_name = config.sheet_name
        self.normalizer = normalizer or NormalizerService()
        self.client = client or httpx.AsyncClient(follow_redirects=True, timeout=timeout)
        self._row_index: Dict[str, int] = {}

        log.info(f"Sheets adapter initialized for sheet '{self.sheet_name}'")

    async def _request(self, action: str, data: Optional[Dict[str, Any]] = None, **params: Any) -> Dict[str, Any]:
        """
        Performs one proxy call and returns the decoded response body.
        Maps transport failures and ``success: false`` answers to sync errors.
        """
        query = {"action": action, "sheetName": self.sheet_name}
        query.update({k: str(v) for k, v in params.items()})

        try:
            log.debug(f"Sheets proxy {action} (params={params})")
            if data is not None:
                response = await self.client.request(
                    "POST", self.script_url, params=query, data={"data": json.dumps(data)}
                )
            else:
                response = await self.client.request("GET", self.script_url, params=query)
            log.debug(f"Sheets proxy response: {response.status_code}")
            response.raise_for_status()

        except httpx.TimeoutException as e:
            error_msg = f"Sheets proxy timed out during '{action}': {e}"
            log.error(error_msg)
            raise BackendUnreachableError(error_msg) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                error_msg = f"Sheets proxy denied '{action}' (HTTP {status}); check the script deployment access"
            elif status == 404:
                error_msg = f"Sheets proxy not found at {self.script_url}"
            else:
                error_msg = f"Sheets proxy HTTP {status} error during '{action}': {e.response.text}"
            log.error(error_msg)
            if status >= 500:
                raise BackendUnreachableError(error_msg) from e
            raise BackendRejectedError(error_msg, status_code=status) from e

        except httpx.RequestError as e:
            error_msg = f"Sheets proxy request error during '{action}': {e}"
            log.error(error_msg)
            raise BackendUnreachableError(error_msg) from e

        try:
            body = response.json()
        except ValueError as e:
            error_msg = f"Sheets proxy returned a non-JSON body for '{action}'"
            log.error(f"{error_msg}: {response.text[:200]}")
            raise BackendRejectedError(error_msg, status_code=response.status_code) from e

        if not isinstance(body, dict) or not body.get("success"):
            error = (body.get("error") or body.get("message")) if isinstance(body, dict) else None
            error_msg = error or f"Unknown error from sheets proxy during '{action}'"
            log.error(f"Sheets proxy rejected '{action}': {error_msg}")
            raise BackendRejectedError(error_msg, status_code=response.status_code)

        return body

    async def initialize(self) -> str:
        """Writes the header row when the sheet is empty."""
        body = await self._request("initialize")
        return body.get("message", "")

    async def pull_all(self, include_archived: bool = False) -> List[Event]:
        """
        Reads the main sheet. Archived rows live on a separate sheet the proxy
        does not expose, so ``include_archived`` cannot widen the result.
        """
        body = await self._request("getAll")
        records = body.get("data") or []

        events: List[Event] = []
        row_index: Dict[str, int] = {}
        for record in records:
            event = self.normalizer.sheet_record_to_event(record)
            if event is None:
                continue
            events.append(event)
            if record.get("sheetRowId"):
                try:
                    row_index[event.id] = int(record["sheetRowId"])
                except (TypeError, ValueError):
                    log.warning(f"Ignoring invalid sheetRowId for event {event.id}: {record['sheetRowId']!r}")

        self._row_index = row_index
        log.info(f"Received {len(events)} event(s) from sheet '{self.sheet_name}'")
        return events

    async def _find_row(self, event_id: str) -> Optional[int]:
        if event_id not in self._row_index:
            await self.pull_all()
        return self._row_index.get(event_id)

    async def push_create(self, event: Event) -> None:
        await self.append([event])

    async def append(self, events: List[Event]) -> None:
        if not events:
            return
        rows = [self.normalizer.event_to_sheet_row(e) for e in events]
        await self._request("append", {"rows": rows})
        log.debug(f"Appended {len(rows)} row(s)")

    async def push_update(self, event_id: str, fields: Dict[str, Any]) -> None:
        """
        Rows are rewritten whole, so ``fields`` must be a full event snapshot.
        An event with no row yet is appended instead.
        """
        try:
            event = Event.model_validate({**fields, "id": event_id})
        except ValueError as e:
            raise BackendRejectedError(f"Sheets update for {event_id} needs a full event snapshot: {e}") from e

        row_index = await self._find_row(event_id)
        if row_index is None:
            log.info(f"Event {event_id} has no sheet row yet; appending instead of updating")
            await self.append([event])
            return

        await self._request("update", {"rowIndex": row_index, "row": self.normalizer.event_to_sheet_row(event)})

    async def push_batch_update(self, events: List[Event]) -> int:
        """Rewrites the rows of events already present on the sheet; returns rows sent."""
        if any(e.id not in self._row_index for e in events):
            await self.pull_all()
        updates = [
            {"rowIndex": self._row_index[e.id], "row": self.normalizer.event_to_sheet_row(e)}
            for e in events
            if e.id in self._row_index
        ]
        if not updates:
            return 0
        await self._request("batchUpdate", {"updates": updates})
        return len(updates)

    async def push_restore(self, event: Event) -> None:
        # Archived rows were moved off the main sheet; restoring re-appends.
        await self.append([event.with_changes(archived=False)])

    async def push_delete(self, event_id: str) -> None:
        """Marks the row with the deleted sentinel instead of removing it."""
        row_index = await self._find_row(event_id)
        if row_index is None:
            log.info(f"Event {event_id} not on sheet; nothing to delete")
            return
        await self._request("delete", rowIndex=row_index)
        self._row_index.pop(event_id, None)

    async def push_archive(self, event_id: str) -> None:
        # Archive by id: row numbers shift as rows move to the archive sheet.
        await self.push_batch_archive([event_id])

    async def push_batch_archive(self, event_ids: List[str]) -> None:
        if not event_ids:
            return
        await self._request("archiveAll", {"contractionIds": list(event_ids)})
        self._row_index.clear()

    async def test_connection(self) -> bool:
        try:
            await self._request("test")
            return True
        except (BackendRejectedError, BackendUnreachableError) as e:
            log.warning(f"Sheets connection test failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()
