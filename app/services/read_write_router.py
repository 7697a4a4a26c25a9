"""
Read/write routing between the local cache and the FHIR server.

Reads are answered from the cache; a point read that misses falls through to
the server and repairs the cache. Writes always go to the server first and
touch the cache only after the server confirms, so the cache may lag the
server but never leads it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable

from app.errors import FhirNotFoundError, RecordNotFoundError, ValidationFailedError
from app.models.records import CachedRecord
from app.schemas.fhir import PATIENT_FORM_SCHEMA, PATIENT_UPDATE_SCHEMA
from app.services.fhir_client import FhirClient
from app.services.fhir_mapping import build_cached_record, flat_to_fhir, merge_into_resource
from app.services.local_store import LocalStore
from app.services.scheduler import StalenessScheduler
from app.services.sync_engine import utcnow
from app.services.validation import field_issues

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Point-read sources
# ---------------------------------------------------------------------------

class PatientSource(ABC):
    """Somewhere a single Patient can be looked up by id."""

    name: str

    @abstractmethod
    def get(self, patient_id: str) -> CachedRecord | None:
        """Return the record, or None when this source does not have it."""


class LocalSource(PatientSource):
    """Cache only; never contacts the server."""

    name = "cache"

    def __init__(self, store: LocalStore):
        self.store = store

    def get(self, patient_id: str) -> CachedRecord | None:
        return self.store.get(patient_id)


class RemoteBackedSource(PatientSource):
    """Reads from the server and writes what it finds back into the cache."""

    name = "remote"

    def __init__(self, remote: FhirClient, store: LocalStore, clock: Callable[[], datetime] = utcnow):
        self.remote = remote
        self.store = store
        self._clock = clock

    def get(self, patient_id: str) -> CachedRecord | None:
        try:
            fetched = self.remote.read(patient_id)
        except FhirNotFoundError:
            return None
        record = build_cached_record(fetched.resource, synced_at=self._clock(), raw=fetched.raw)
        self.store.upsert(record)
        logger.info("Cache repaired with Patient/%s from remote", patient_id)
        return record


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class ReadWriteRouter:
    """Facade the API talks to for every Patient operation."""

    def __init__(
        self,
        store: LocalStore,
        remote: FhirClient,
        scheduler: StalenessScheduler,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.scheduler = scheduler
        self._clock = clock
        self.read_sources: list[PatientSource] = [
            LocalSource(store),
            RemoteBackedSource(remote, store, clock=clock),
        ]

    # -- reads ---------------------------------------------------------

    def list_patients(
        self,
        filters: dict[str, str] | None = None,
        sort: list[tuple[str, str]] | None = None,
        offset: int = 0,
        limit: int = 25,
    ) -> tuple[list[CachedRecord], int]:
        records, total = self.store.query(filters, sort, offset, limit)
        self.scheduler.trigger_if_stale()
        return records, total

    def get_patient(self, patient_id: str) -> CachedRecord:
        for source in self.read_sources:
            record = source.get(patient_id)
            if record is not None:
                logger.debug("Patient/%s served from %s", patient_id, source.name)
                return record
        raise RecordNotFoundError(patient_id)

    # -- writes --------------------------------------------------------

    @staticmethod
    def _validate(form: dict[str, Any], schema: dict[str, Any]) -> None:
        issues = field_issues(form, schema)
        if issues:
            raise ValidationFailedError(issues)

    def _cache_confirmed(self, fetched) -> CachedRecord:
        record = build_cached_record(fetched.resource, synced_at=self._clock(), raw=fetched.raw)
        self.store.upsert(record)
        return record

    def create_patient(self, form: dict[str, Any]) -> CachedRecord:
        self._validate(form, PATIENT_FORM_SCHEMA)
        created = self.remote.create(flat_to_fhir(form))
        record = self._cache_confirmed(created)
        logger.info("Created Patient/%s", record.id)
        return record

    def update_patient(self, patient_id: str, form: dict[str, Any]) -> CachedRecord:
        self._validate(form, PATIENT_UPDATE_SCHEMA)
        try:
            existing = self.remote.read(patient_id)
        except FhirNotFoundError:
            raise RecordNotFoundError(patient_id)
        merged = merge_into_resource(existing.resource, form, patient_id)
        updated = self.remote.update(patient_id, merged)
        record = self._cache_confirmed(updated)
        logger.info("Updated Patient/%s", patient_id)
        return record

    def delete_patient(self, patient_id: str) -> None:
        try:
            self.remote.delete(patient_id)
        except FhirNotFoundError:
            # The server already has no such record; drop any cached copy.
            self.store.delete(patient_id)
            logger.info("Patient/%s already gone on the server; evicted from cache", patient_id)
            raise
        self.store.delete(patient_id)
        logger.info("Deleted Patient/%s", patient_id)
