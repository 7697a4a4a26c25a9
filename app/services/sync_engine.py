"""
Incremental reconciliation of the local Patient cache with the FHIR server.

A cycle reads the watermark, pages through every Patient modified after it
(the whole collection, newest first, when there is no watermark), upserts
each one and only then advances the watermark to the time the cycle started.
A failure mid-cycle keeps the upserts already applied and leaves the
watermark untouched, so the next cycle retries from the same point.

At most one cycle runs at a time; a trigger that finds one running is
refused immediately rather than queued.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from app.errors import FhirError, SyncAlreadyRunningError, SyncFailedError
from app.schemas.fhir import FHIR_PATIENT_RESOURCE_SCHEMA
from app.services.fhir_client import FhirClient
from app.services.fhir_mapping import build_cached_record, format_instant
from app.services.local_store import LocalStore
from app.services.validation import validate_against_schema

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


@dataclass
class SyncResult:
    status: str
    synced_count: int
    skipped_count: int
    watermark: datetime | None
    started_at: datetime
    finished_at: datetime
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncEngine:
    """
    Drives watermark-based sync between a FhirClient and a LocalStore.

    Usage:
        engine = SyncEngine(store, client, page_size=100)
        result = engine.sync()          # raises SyncAlreadyRunningError / SyncFailedError
    """

    def __init__(
        self,
        store: LocalStore,
        remote: FhirClient,
        page_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.page_size = page_size
        self._clock = clock
        self._guard = threading.Lock()
        self._state = SyncState.IDLE
        self.last_result: SyncResult | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def _search_params(self, watermark: datetime | None) -> dict[str, Any]:
        params: dict[str, Any] = {"_sort": "-_lastUpdated", "_count": self.page_size}
        if watermark is not None:
            params["_lastUpdated"] = f"gt{format_instant(watermark)}"
        return params

    def sync(self) -> SyncResult:
        """Run one cycle, or refuse at once if another cycle holds the guard."""
        if not self._guard.acquire(blocking=False):
            logger.info("Sync requested while a cycle is running; ignoring")
            raise SyncAlreadyRunningError("A sync cycle is already running")

        try:
            self._state = SyncState.RUNNING
            return self._run_cycle()
        finally:
            # A failed cycle stays visible as FAILED until the next one starts.
            if self._state == SyncState.RUNNING:
                self._state = SyncState.IDLE
            self._guard.release()

    def _run_cycle(self) -> SyncResult:
        # Cutoff is taken before fetching so edits made during the cycle are
        # picked up by the next one.
        started_at = self._clock()
        watermark = None
        synced = skipped = pages = 0

        try:
            watermark = self.store.get_watermark()
            if watermark is None:
                logger.info("Starting full sync (no watermark)")
            else:
                logger.info("Starting incremental sync since %s", watermark.isoformat())

            for page in self.remote.iter_pages(self._search_params(watermark)):
                pages += 1
                for resource in page.resources:
                    errors = validate_against_schema(resource, FHIR_PATIENT_RESOURCE_SCHEMA)
                    if errors:
                        skipped += 1
                        logger.warning("Skipping unusable bundle entry: %s", "; ".join(errors))
                        continue
                    try:
                        record = build_cached_record(resource, synced_at=self._clock())
                    except ValueError as exc:
                        skipped += 1
                        logger.warning("Skipping Patient/%s: %s", resource.get("id"), exc)
                        continue
                    self.store.upsert(record)
                    synced += 1
                logger.debug("Sync page %d applied (%d records so far)", pages, synced)

            new_watermark = self.store.set_watermark(started_at)
        except (FhirError, SQLAlchemyError) as exc:
            self._state = SyncState.FAILED
            logger.error(
                "Sync failed after %d page(s), %d record(s) applied; watermark left at %s: %s",
                pages,
                synced,
                watermark.isoformat() if watermark else None,
                exc,
            )
            self.last_result = SyncResult(
                status=SyncState.FAILED.value,
                synced_count=synced,
                skipped_count=skipped,
                watermark=watermark,
                started_at=started_at,
                finished_at=self._clock(),
                error=str(exc),
            )
            raise SyncFailedError(str(exc), synced_count=synced) from exc

        self.last_result = SyncResult(
            status="completed",
            synced_count=synced,
            skipped_count=skipped,
            watermark=new_watermark,
            started_at=started_at,
            finished_at=self._clock(),
        )
        logger.info(
            "Sync completed: %d record(s) over %d page(s), watermark %s",
            synced,
            pages,
            new_watermark.isoformat(),
        )
        return self.last_result
