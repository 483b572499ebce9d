from typing import Any, Dict, List

from contraction_sync.connectors.base import BaseSyncAdapter
from contraction_sync.schemas.backend import AdapterKind
from contraction_sync.schemas.event import Event

LOCAL_ONLY_MESSAGE = (
    "No sync backend configured: contractions are only stored on this device "
    "and are not guaranteed to survive a reinstall or cleared storage."
)


class PassiveAdapter(BaseSyncAdapter):
    """Used when no remote backend is configured; every call is a no-op."""

    kind = AdapterKind.PASSIVE

    async def push_create(self, event: Event) -> None:
        return None

    async def push_update(self, event_id: str, fields: Dict[str, Any]) -> None:
        return None

    async def push_archive(self, event_id: str) -> None:
        return None

    async def push_batch_archive(self, event_ids: List[str]) -> None:
        return None

    async def pull_all(self, include_archived: bool = False) -> List[Event]:
        return []

    async def test_connection(self) -> bool:
        return False
