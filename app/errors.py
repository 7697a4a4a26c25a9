"""Exception taxonomy shared by the remote client, the cache and the API layer."""

from __future__ import annotations

from typing import Any


class FhirError(Exception):
    """Base exception for failures reported by (or reaching) the FHIR server."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        operation_outcome: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.operation_outcome = operation_outcome


class FhirConnectionError(FhirError):
    """Network failure or timeout; the server produced no status."""


class FhirNotFoundError(FhirError):
    """Resource not found (404/410)."""


class FhirValidationError(FhirError):
    """The server rejected the resource (400/422)."""


class FhirServerError(FhirError):
    """Server error (5xx)."""


class RecordNotFoundError(Exception):
    """Identifier absent both from the cache and from the remote server."""

    def __init__(self, patient_id: str):
        super().__init__(f"Patient {patient_id} not found")
        self.patient_id = patient_id


class ValidationFailedError(Exception):
    """Caller-supplied data failed field constraints before any remote call."""

    def __init__(self, issues: list[dict[str, str]]):
        super().__init__("; ".join(f"{i['field']}: {i['message']}" for i in issues))
        self.issues = issues


class SyncFailedError(Exception):
    """A sync cycle aborted partway; the watermark was left unchanged."""

    def __init__(self, message: str, synced_count: int = 0):
        super().__init__(message)
        self.synced_count = synced_count


class SyncAlreadyRunningError(Exception):
    """Another sync cycle holds the exclusivity guard."""
