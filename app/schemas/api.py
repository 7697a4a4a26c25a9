"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# Patient forms
# ---------------------------------------------------------------------------

class PatientCreate(BaseModel):
    """Flat Patient form; field constraints are checked by the JSON schema."""
    model_config = ConfigDict(extra="forbid")

    family: str | None = None
    given: str | None = None
    gender: str | None = None
    birthDate: str | None = None
    phone: str | None = None


class PatientUpdate(PatientCreate):
    """Any subset of the form fields; omitted fields keep the server's value."""


# ---------------------------------------------------------------------------
# Patient responses
# ---------------------------------------------------------------------------

class PatientResponse(BaseModel):
    id: str
    name: str
    family: str
    given: str
    gender: str
    birthDate: str
    phone: str
    lastUpdated: datetime | None = None
    syncedAt: datetime


class PatientPage(BaseModel):
    items: list[PatientResponse]
    itemCount: int


class ValidationIssue(BaseModel):
    field: str
    message: str


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------

class SyncResponse(BaseModel):
    status: str
    synced_count: int
    skipped_count: int = 0
    watermark: datetime | None
    started_at: datetime
    finished_at: datetime
    error: str | None = None


class SyncStatusResponse(BaseModel):
    state: str
    watermark: datetime | None
    stale: bool
    scheduler_running: bool
    cached_records: int
    last_result: SyncResponse | None = None


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

class ApiLogEntryResponse(BaseModel):
    id: str
    timestamp: datetime
    method: str
    url: str
    status: int
    ok: bool
    duration_ms: float
    operation: str
    reason: str = ""


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"
    sync_state: str
    watermark: datetime | None = None
