from datetime import datetime
from typing import Any, Dict, List, Optional

import logging

from pydantic.alias_generators import to_camel

from contraction_sync.schemas.event import Event, SyncStatus
from contraction_sync.utils.validation import parse_intensity

log = logging.getLogger(__name__)

SHEET_HEADERS = ["id", "startTime", "endTime", "duration", "intensity", "notes", "createdAt", "updatedAt", "deleted"]
DELETED_SENTINEL = "DELETED"

# Document fields for the realtime store: the Event shape minus local bookkeeping.
DOCUMENT_FIELDS = ("start_time", "end_time", "duration", "intensity", "notes", "created_at", "updated_at", "archived")


def _parse_instant(value: Any) -> Optional[int]:
    """
    Spreadsheet cells come back as numbers, numeric strings or (when the
    sheet auto-formats them) ISO dates; normalize all of them to epoch ms.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    try:
        return int(float(text))
    except ValueError:
        pass
    try:
        return int(datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return None


def _cell(value: Optional[Any]) -> str:
    return "" if value is None else str(value)


class NormalizerService:
    """
    Converts events to and from the wire shapes of each remote backend.
    """

    def __init__(self, clock=None):
        self.clock = clock

    def _synced_at(self) -> Optional[int]:
        return self.clock() if self.clock else None

    # Spreadsheet rows

    def event_to_sheet_row(self, event: Event) -> List[str]:
        """Nine positional cells; the deleted flag is always blank on write."""
        return [
            event.id,
            _cell(event.start_time),
            _cell(event.end_time),
            _cell(event.duration),
            _cell(event.intensity),
            event.notes or "",
            _cell(event.created_at),
            _cell(event.updated_at),
            "",
        ]

    def sheet_row_to_event(self, row: List[Any]) -> Optional[Event]:
        """Parse a positional row; returns None for blank, deleted or unparseable rows."""
        padded = list(row) + [""] * (len(SHEET_HEADERS) - len(row))
        record = dict(zip(SHEET_HEADERS, padded))
        return self.sheet_record_to_event(record)

    def sheet_record_to_event(self, record: Dict[str, Any]) -> Optional[Event]:
        """Parse a keyed record as returned by the proxy's ``getAll`` action."""
        if not record.get("id"):
            return None
        if record.get("deleted") == DELETED_SENTINEL:
            return None

        start_time = _parse_instant(record.get("startTime"))
        if start_time is None:
            log.warning(f"Skipping sheet row for {record.get('id')}: unparseable startTime {record.get('startTime')!r}")
            return None

        created_at = _parse_instant(record.get("createdAt")) or start_time
        updated_at = _parse_instant(record.get("updatedAt")) or created_at
        try:
            return Event(
                id=str(record["id"]),
                start_time=start_time,
                end_time=_parse_instant(record.get("endTime")),
                intensity=parse_intensity(record.get("intensity")),
                notes=record.get("notes") or None,
                created_at=created_at,
                updated_at=max(updated_at, created_at),
                archived=False,
                sync_status=SyncStatus.SYNCED,
                synced_at=self._synced_at(),
            )
        except ValueError as e:
            log.warning(f"Skipping malformed sheet row for {record.get('id')}: {e}")
            return None

    # Realtime documents

    def event_to_document(self, event: Event) -> Dict[str, Any]:
        """camelCase document body; optional fields are omitted when unset."""
        doc = event.model_dump(include=set(DOCUMENT_FIELDS), by_alias=True)
        if event.intensity is None:
            doc.pop("intensity")
        if event.notes is None:
            doc.pop("notes")
        return doc

    def fields_to_document(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Partial update body from snake_case or camelCase field names."""
        doc = {}
        for name in DOCUMENT_FIELDS:
            alias = to_camel(name)
            if name in fields:
                doc[alias] = fields[name]
            elif alias in fields:
                doc[alias] = fields[alias]
        return doc

    def document_to_event(self, doc_id: str, data: Dict[str, Any]) -> Event:
        return Event(
            id=doc_id,
            start_time=data["startTime"],
            end_time=data.get("endTime"),
            intensity=data.get("intensity"),
            notes=data.get("notes"),
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            archived=bool(data.get("archived", False)),
            sync_status=SyncStatus.SYNCED,
            synced_at=self._synced_at(),
        )
