"""Process-level owner of the cache components."""

from __future__ import annotations

import logging

from app.config import Settings
from app.models.database import build_engine
from app.services.api_log import ApiLog
from app.services.encryption import EncryptionService
from app.services.fhir_client import FhirClient
from app.services.local_store import LocalStore
from app.services.read_write_router import ReadWriteRouter
from app.services.scheduler import StalenessScheduler
from app.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class CacheRuntime:
    """
    Holds exactly one store, client, sync engine, scheduler and router.

    Built once at process start and shut down at process stop; the API
    reaches it through ``app.state.runtime``.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: FhirClient,
        engine: SyncEngine,
        scheduler: StalenessScheduler,
        router: ReadWriteRouter,
        api_log: ApiLog,
        environment: str = "development",
        schedule_on_start: bool = True,
    ):
        self.store = store
        self.remote = remote
        self.engine = engine
        self.scheduler = scheduler
        self.router = router
        self.api_log = api_log
        self.environment = environment
        self.schedule_on_start = schedule_on_start

    @classmethod
    def from_settings(cls, settings: Settings) -> CacheRuntime:
        api_log = ApiLog(capacity=settings.API_LOG_CAPACITY)
        store = LocalStore(
            build_engine(settings.DATABASE_URL),
            encryption=EncryptionService(settings.CACHE_ENCRYPTION_KEY or None),
        )
        remote = FhirClient(
            settings.FHIR_SERVER_URL,
            timeout=settings.FHIR_TIMEOUT_SECONDS,
            api_log=api_log,
        )
        engine = SyncEngine(store, remote, page_size=settings.FHIR_PAGE_SIZE)
        scheduler = StalenessScheduler(
            engine,
            interval_seconds=settings.SYNC_INTERVAL_SECONDS,
            staleness_threshold_seconds=settings.STALENESS_THRESHOLD_SECONDS,
        )
        router = ReadWriteRouter(store, remote, scheduler)
        return cls(
            store=store,
            remote=remote,
            engine=engine,
            scheduler=scheduler,
            router=router,
            api_log=api_log,
            environment=settings.ENVIRONMENT,
            schedule_on_start=settings.SYNC_ON_STARTUP,
        )

    def start(self) -> None:
        self.store.create_schema()
        if self.schedule_on_start:
            self.scheduler.start()
        logger.info("Patient cache started (%s)", self.environment)

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.remote.close()
        self.store.engine.dispose()
        logger.info("Patient cache stopped")
