import logging
from typing import Optional

from contraction_sync.connectors.base import BaseSyncAdapter
from contraction_sync.connectors.document_store import DocumentStoreClient
from contraction_sync.connectors.passive_adapter import PassiveAdapter
from contraction_sync.connectors.realtime_adapter import RealtimeAdapter
from contraction_sync.connectors.sheets_adapter import SheetsAdapter
from contraction_sync.errors import BackendUnconfiguredError
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.services.normalizer import NormalizerService
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)


def build_adapter(
    config: BackendConfig,
    document_client: Optional[DocumentStoreClient] = None,
    timeout: float = 15.0,
    clock: Clock = now_ms,
) -> BaseSyncAdapter:
    """Construct the one adapter variant selected by ``config``."""
    normalizer = NormalizerService(clock=clock)

    if config.kind is AdapterKind.POLLING:
        adapter: BaseSyncAdapter = SheetsAdapter(config, timeout=timeout, normalizer=normalizer)
    elif config.kind is AdapterKind.REALTIME:
        if document_client is None:
            raise BackendUnconfiguredError("Realtime backend selected but no document store client is available")
        adapter = RealtimeAdapter(config, document_client, timeout=timeout, normalizer=normalizer)
    else:
        adapter = PassiveAdapter()

    log.info(f"Using {type(adapter).__name__} ({config.kind.value})")
    return adapter
