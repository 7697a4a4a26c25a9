"""
FHIR R4 client for the Patient collection on the system-of-record.

Handles:
- search with bundle pagination (``Bundle.link[relation=next]``)
- read / create / update (full replace) / delete by id
- status-coded errors parsed from OperationOutcome bodies
- a bounded timeout on every call, retries for transient statuses
- a monitoring log entry for every request
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.errors import (
    FhirConnectionError,
    FhirError,
    FhirNotFoundError,
    FhirServerError,
    FhirValidationError,
)
from app.services.api_log import ApiLog, ApiLogEntry

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"


@dataclass
class BundlePage:
    """One page of a searchset Bundle, normalized."""

    resources: list[dict[str, Any]] = field(default_factory=list)
    total: int | None = None
    next_url: str | None = None


@dataclass
class FetchedResource:
    """A single resource plus the response text it was parsed from."""

    resource: dict[str, Any]
    raw: str | None = None


def parse_bundle(bundle: dict[str, Any]) -> BundlePage:
    resources = [
        entry["resource"]
        for entry in bundle.get("entry") or []
        if isinstance(entry.get("resource"), dict)
    ]
    next_url = None
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            next_url = link["url"]
            break
    return BundlePage(resources=resources, total=bundle.get("total"), next_url=next_url)


class FhirClient:
    """
    Remote access client for ``{base_url}/Patient``.

    Usage:
        client = FhirClient("https://hapi.fhir.org/baseR4", timeout=10)
        page = client.search({"family": "Smith", "_count": 20})
        patient = client.read("123")
    """

    resource_type = "Patient"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        api_log: ApiLog | None = None,
        max_retries: int = 2,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_log = api_log
        self.session = session or self._create_session(max_retries)

    def _create_session(self, max_retries: int) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["GET", "PUT", "DELETE"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"Accept": FHIR_JSON, "Content-Type": FHIR_JSON})
        return session

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _url(self, resource_id: str | None = None) -> str:
        if resource_id:
            return f"{self.base_url}/{self.resource_type}/{resource_id}"
        return f"{self.base_url}/{self.resource_type}"

    def _request(self, method: str, url: str, operation: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        start = time.perf_counter()
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout:
            self._log(method, url, operation, start, 0, "timeout")
            raise FhirConnectionError(f"Request timeout after {self.timeout}s")
        except requests.exceptions.ConnectionError as exc:
            self._log(method, url, operation, start, 0, "connection error")
            raise FhirConnectionError(f"Connection error: {exc}")
        except requests.exceptions.RequestException as exc:
            self._log(method, url, operation, start, 0, str(exc))
            raise FhirConnectionError(f"Request failed: {exc}")

        self._log(method, response.url or url, operation, start, response.status_code, response.reason or "")
        self._raise_for_status(response, operation)
        return response

    def _log(self, method, url, operation, start, status, reason) -> None:
        if self.api_log is None:
            return
        self.api_log.add(
            ApiLogEntry(
                method=method,
                url=url,
                status=status,
                ok=200 <= status < 300,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                operation=operation,
                reason=reason,
            )
        )

    @staticmethod
    def _raise_for_status(response: requests.Response, operation: str) -> None:
        if response.ok:
            return

        outcome = None
        message = f"{response.status_code} {response.reason or ''}".strip()
        try:
            data = response.json()
            if data.get("resourceType") == "OperationOutcome":
                outcome = data
                issues = data.get("issue") or []
                if issues:
                    detail = issues[0].get("diagnostics") or (issues[0].get("details") or {}).get("text")
                    if detail:
                        message = f"{message}: {detail}"
        except (ValueError, AttributeError):
            pass

        status = response.status_code
        text = f"{operation} failed: {message}"
        if status in (404, 410):
            raise FhirNotFoundError(text, status_code=status, operation_outcome=outcome)
        if status in (400, 422):
            raise FhirValidationError(text, status_code=status, operation_outcome=outcome)
        if status >= 500:
            raise FhirServerError(text, status_code=status, operation_outcome=outcome)
        raise FhirError(text, status_code=status, operation_outcome=outcome)

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        try:
            return response.json()
        except ValueError as exc:
            raise FhirError(
                f"Invalid JSON from FHIR server: {exc}", status_code=response.status_code
            )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, params: dict[str, Any] | None = None) -> BundlePage:
        response = self._request("GET", self._url(), "Search Patients", params=params or {})
        return parse_bundle(self._json(response))

    def next_page(self, next_url: str) -> BundlePage:
        response = self._request("GET", next_url, "Search Patients (next page)")
        return parse_bundle(self._json(response))

    def iter_pages(self, params: dict[str, Any] | None = None) -> Iterator[BundlePage]:
        """Yield every page of a search until the server stops returning a next link."""
        page = self.search(params)
        yield page
        while page.next_url:
            logger.debug("Following next page link %s", page.next_url)
            page = self.next_page(page.next_url)
            yield page

    # ------------------------------------------------------------------
    # Instance operations
    # ------------------------------------------------------------------

    def read(self, resource_id: str) -> FetchedResource:
        response = self._request("GET", self._url(resource_id), "Get Patient")
        return FetchedResource(resource=self._json(response), raw=response.text)

    def create(self, resource: dict[str, Any]) -> FetchedResource:
        response = self._request(
            "POST",
            self._url(),
            "Create Patient",
            json=resource,
            headers={"Prefer": "return=representation"},
        )
        if response.content:
            return FetchedResource(resource=self._json(response), raw=response.text)

        # Server honoured return=minimal anyway; follow the Location header.
        location = response.headers.get("Location") or response.headers.get("Content-Location")
        if not location:
            raise FhirError(
                "Create Patient succeeded without a body or Location header",
                status_code=response.status_code,
            )
        new_id = location.split(f"{self.resource_type}/", 1)[-1].split("/", 1)[0]
        return self.read(new_id)

    def update(self, resource_id: str, resource: dict[str, Any]) -> FetchedResource:
        response = self._request(
            "PUT",
            self._url(resource_id),
            "Update Patient",
            json=resource,
            headers={"Prefer": "return=representation"},
        )
        if response.content:
            return FetchedResource(resource=self._json(response), raw=response.text)
        return self.read(resource_id)

    def delete(self, resource_id: str) -> None:
        self._request("DELETE", self._url(resource_id), "Delete Patient")

    def close(self) -> None:
        self.session.close()
