"""In-memory stand-ins for the FHIR server and the wall clock."""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from app.errors import FhirConnectionError, FhirNotFoundError, FhirServerError
from app.services.fhir_client import BundlePage, FetchedResource, FhirClient
from app.services.fhir_mapping import format_instant, parse_instant, serialize_resource

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_patient_resource(
    patient_id: str = "p-1",
    family: str = "Doe",
    given: str = "Jane",
    gender: str = "female",
    birth_date: str = "1990-01-15",
    phone: str = "555-0100",
    last_updated: datetime | None = T0,
) -> dict[str, Any]:
    resource: dict[str, Any] = {
        "resourceType": "Patient",
        "id": patient_id,
        "name": [{"use": "official", "family": family, "given": given.split()}],
        "gender": gender,
        "birthDate": birth_date,
        "telecom": [{"system": "phone", "value": phone, "use": "mobile"}],
    }
    if last_updated is not None:
        resource["meta"] = {"versionId": "1", "lastUpdated": format_instant(last_updated)}
    return resource


class FakeFhirServer(FhirClient):
    """
    Patient collection held in a dict. Search honours ``_count``,
    ``_lastUpdated=gt…`` and newest-first order, and paginates through
    ``next_url`` tokens so ``iter_pages`` runs unchanged.
    """

    def __init__(self, clock: FakeClock | None = None):
        super().__init__("http://fhir.test/fhir")
        self.clock = clock or FakeClock()
        self.resources: dict[str, dict[str, Any]] = {}
        self.search_params: list[dict[str, Any]] = []
        self.page_requests = 0
        self.read_requests = 0
        self.fail_on_page: int | None = None
        self.fail_writes = False
        self.fail_reads = False
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self._cursors: dict[str, tuple[list[dict[str, Any]], int, int]] = {}
        self._next_id = 1

    # -- test helpers ----------------------------------------------------

    def put(self, resource: dict[str, Any]) -> dict[str, Any]:
        """Seed or modify a resource directly, as a third party would."""
        self.resources[resource["id"]] = copy.deepcopy(resource)
        return resource

    def touch(self, patient_id: str, **changes: Any) -> dict[str, Any]:
        resource = self.resources[patient_id]
        resource.update(changes)
        resource["meta"] = {"lastUpdated": format_instant(self.clock())}
        return resource

    # -- FhirClient surface ----------------------------------------------

    def _page(self, matches: list[dict[str, Any]], offset: int, count: int) -> BundlePage:
        self.page_requests += 1
        if self.gate is not None:
            self.entered.set()
            self.gate.wait(timeout=5)
        if self.fail_on_page is not None and self.page_requests >= self.fail_on_page:
            raise FhirServerError("Search Patients failed: 503 Service Unavailable", status_code=503)

        chunk = matches[offset:offset + count]
        next_url = None
        if offset + count < len(matches):
            next_url = f"http://fhir.test/fhir?_getpages=cursor-{len(self._cursors)}"
            self._cursors[next_url] = (matches, offset + count, count)
        return BundlePage(
            resources=[copy.deepcopy(r) for r in chunk],
            total=len(matches),
            next_url=next_url,
        )

    def search(self, params: dict[str, Any] | None = None) -> BundlePage:
        params = dict(params or {})
        self.search_params.append(params)
        count = int(params.get("_count", 100))

        matches = list(self.resources.values())
        since = params.get("_lastUpdated")
        if since:
            cutoff = parse_instant(since[2:])
            matches = [
                r for r in matches
                if parse_instant(r.get("meta", {}).get("lastUpdated")) > cutoff
            ]
        matches.sort(key=lambda r: (r.get("meta", {}).get("lastUpdated", ""), r["id"]), reverse=True)
        return self._page(matches, 0, count)

    def next_page(self, next_url: str) -> BundlePage:
        matches, offset, count = self._cursors[next_url]
        return self._page(matches, offset, count)

    def read(self, resource_id: str) -> FetchedResource:
        self.read_requests += 1
        if self.fail_reads:
            raise FhirConnectionError("Connection error: fhir.test unreachable")
        if resource_id not in self.resources:
            raise FhirNotFoundError("Get Patient failed: 404 Not Found", status_code=404)
        resource = copy.deepcopy(self.resources[resource_id])
        return FetchedResource(resource=resource, raw=serialize_resource(resource))

    def _stamp(self, resource: dict[str, Any]) -> FetchedResource:
        resource["meta"] = {"versionId": "1", "lastUpdated": format_instant(self.clock())}
        self.resources[resource["id"]] = copy.deepcopy(resource)
        return FetchedResource(resource=resource, raw=serialize_resource(resource))

    def create(self, resource: dict[str, Any]) -> FetchedResource:
        if self.fail_writes:
            raise FhirConnectionError("Connection error: fhir.test unreachable")
        resource = copy.deepcopy(resource)
        resource["id"] = f"new-{self._next_id}"
        self._next_id += 1
        return self._stamp(resource)

    def update(self, resource_id: str, resource: dict[str, Any]) -> FetchedResource:
        if self.fail_writes:
            raise FhirServerError("Update Patient failed: 500 Internal Server Error", status_code=500)
        if resource_id not in self.resources:
            raise FhirNotFoundError("Update Patient failed: 404 Not Found", status_code=404)
        return self._stamp(copy.deepcopy(resource))

    def delete(self, resource_id: str) -> None:
        if self.fail_writes:
            raise FhirServerError("Delete Patient failed: 500 Internal Server Error", status_code=500)
        if resource_id not in self.resources:
            raise FhirNotFoundError("Delete Patient failed: 404 Not Found", status_code=404)
        del self.resources[resource_id]
