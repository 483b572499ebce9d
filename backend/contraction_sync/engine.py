"""Construction and lifecycle of the sync engine components."""

import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, sessionmaker

from contraction_sync.config import Settings
from contraction_sync.connectors.base import BaseSyncAdapter
from contraction_sync.connectors.document_store import DocumentStoreClient
from contraction_sync.connectors.factory import build_adapter
from contraction_sync.connectors.passive_adapter import PassiveAdapter
from contraction_sync.errors import BackendUnconfiguredError
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.services.app_state import BACKEND_CONFIG_KEY, AppStateService
from contraction_sync.services.event_store import EventStore
from contraction_sync.services.history_manager import HistoryManager
from contraction_sync.services.sync_orchestrator import SyncOrchestrator
from contraction_sync.services.sync_queue import SyncQueue
from contraction_sync.services.tracker import EventTracker
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)

DocumentClientFactory = Callable[[BackendConfig], DocumentStoreClient]


def backend_config_from_settings(settings: Settings) -> BackendConfig:
    """Environment-level backend selection; falls back to passive when incomplete."""
    try:
        return BackendConfig(
            kind=AdapterKind(settings.sync_backend.lower()),
            script_url=settings.sheets_script_url,
            sheet_name=settings.sheets_sheet_name,
            user_id=settings.realtime_user_id,
        )
    except (ValueError, PydanticValidationError) as e:
        log.warning(f"Ignoring sync backend settings ({settings.sync_backend}): {e}")
        return BackendConfig()


class SyncEngine:
    """
    Owns one session and every component built on it. Nothing here is a
    module-level singleton; the HTTP app creates one engine per process and
    tests create one per test.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        document_client_factory: Optional[DocumentClientFactory] = None,
        auto_drain: bool = True,
        clock: Clock = now_ms,
    ):
        self.settings = settings
        self.document_client_factory = document_client_factory
        self.auto_drain = auto_drain
        self.clock = clock

        self.db: Session = session_factory()
        self.app_state = AppStateService(self.db)
        self.store = EventStore(self.db, clock=clock)
        self.queue = SyncQueue(
            self.db,
            max_retries=settings.queue_max_retries,
            retry_delays=settings.retry_delays,
            clock=clock,
        )
        self.history = HistoryManager(self.db, self.store, max_size=settings.history_max_size, clock=clock)

        self.backend_config = self._load_backend_config()
        self.orchestrator = self._build_orchestrator(self._build_adapter_or_passive(self.backend_config))
        self.tracker = EventTracker(self.store, self.history, self.orchestrator, clock=clock)
        self._started = False

    def _load_backend_config(self) -> BackendConfig:
        stored = self.app_state.get(BACKEND_CONFIG_KEY)
        if stored:
            try:
                return BackendConfig.model_validate(stored)
            except PydanticValidationError as e:
                log.warning(f"Ignoring stored backend config: {e}")
        return backend_config_from_settings(self.settings)

    def _build_adapter(self, config: BackendConfig) -> BaseSyncAdapter:
        document_client = None
        if config.kind is AdapterKind.REALTIME and self.document_client_factory is not None:
            document_client = self.document_client_factory(config)
        return build_adapter(
            config,
            document_client=document_client,
            timeout=self.settings.request_timeout_seconds,
            clock=self.clock,
        )

    def _build_adapter_or_passive(self, config: BackendConfig) -> BaseSyncAdapter:
        try:
            return self._build_adapter(config)
        except BackendUnconfiguredError as e:
            log.error(f"Falling back to local-only storage: {e}")
            self.backend_config = BackendConfig()
            return PassiveAdapter()

    def _build_orchestrator(self, adapter: BaseSyncAdapter) -> SyncOrchestrator:
        orchestrator = SyncOrchestrator(
            adapter,
            self.store,
            self.queue,
            self.app_state,
            interval_seconds=self.settings.sync_interval_seconds,
            auto_drain=self.auto_drain,
            clock=self.clock,
        )
        self.history.propagator = orchestrator
        return orchestrator

    @property
    def adapter(self) -> BaseSyncAdapter:
        return self.orchestrator.adapter

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.history.load()
        await self.orchestrator.start()
        log.info(f"Sync engine started ({self.backend_config.kind.value} backend)")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.orchestrator.stop()
        self.tracker.close()
        self.db.close()
        log.info("Sync engine stopped")

    async def reconfigure(self, config: BackendConfig) -> BackendConfig:
        """
        Switch to another backend at runtime. The new adapter is built before
        anything is torn down, so an unusable config leaves the engine as it was.
        """
        adapter = self._build_adapter(config)
        self.app_state.set(BACKEND_CONFIG_KEY, config.model_dump(mode="json"))

        online = self.orchestrator.is_online
        if self._started:
            await self.orchestrator.stop()
        self.tracker.close()

        self.backend_config = config
        self.orchestrator = self._build_orchestrator(adapter)
        self.tracker = EventTracker(self.store, self.history, self.orchestrator, clock=self.clock)
        if self._started:
            await self.orchestrator.set_online(online)
            await self.orchestrator.start()
        log.info(f"Sync backend switched to {config.kind.value}")
        return config
