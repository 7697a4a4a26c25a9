"""
FastAPI routes – the API surface the presentation layer talks to.

Same vocabulary as the FHIR server (``_count``, ``_offset``, ``_sort`` and
the Patient search parameters) so callers cannot tell whether an answer came
from the cache or the server.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from app.errors import (
    FhirError,
    RecordNotFoundError,
    SyncAlreadyRunningError,
    SyncFailedError,
    ValidationFailedError,
)
from app.schemas.api import (
    ApiLogEntryResponse,
    HealthResponse,
    PatientCreate,
    PatientPage,
    PatientResponse,
    PatientUpdate,
    SyncResponse,
    SyncStatusResponse,
    ValidationIssue,
)
from app.services.fhir_mapping import (
    SEARCH_PARAM_TO_FIELD,
    parse_sort,
    quick_search_filter,
    to_flat_patient,
)
from app.services.runtime import CacheRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


def get_runtime(request: Request) -> CacheRuntime:
    """FastAPI dependency returning the process-wide cache runtime."""
    return request.app.state.runtime


def _remote_http_error(exc: FhirError) -> HTTPException:
    # Remote statuses pass through unchanged; no status means the server was unreachable.
    return HTTPException(status_code=exc.status_code or 502, detail=str(exc))


def _validation_http_error(exc: ValidationFailedError) -> HTTPException:
    issues = [ValidationIssue(**issue).model_dump() for issue in exc.issues]
    return HTTPException(status_code=422, detail={"issues": issues})


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(runtime: CacheRuntime = Depends(get_runtime)):
    """Liveness probe – verifies the local store is reachable."""
    return HealthResponse(
        status="healthy",
        environment=runtime.environment,
        database="connected" if runtime.store.ping() else "disconnected",
        sync_state=runtime.engine.state.value,
        watermark=runtime.store.get_watermark(),
    )


# ---------------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------------

@router.get("/patients", response_model=PatientPage)
def list_patients(
    count: int = Query(25, alias="_count", ge=0, le=1000),
    offset: int = Query(0, alias="_offset", ge=0),
    sort: str | None = Query(None, alias="_sort"),
    q: str | None = Query(None, description="Quick search on name or phone"),
    patient_id: str | None = Query(None, alias="_id"),
    name: str | None = None,
    family: str | None = None,
    given: str | None = None,
    telecom: str | None = None,
    phone: str | None = None,
    gender: str | None = None,
    birthdate: str | None = None,
    runtime: CacheRuntime = Depends(get_runtime),
):
    """Search the cache. Triggers a background sync when the cache is stale."""
    params = {
        "_id": patient_id,
        "name": name,
        "family": family,
        "given": given,
        "telecom": telecom,
        "phone": phone,
        "gender": gender,
        "birthdate": birthdate,
    }
    filters = {
        SEARCH_PARAM_TO_FIELD[param]: value for param, value in params.items() if value
    }
    if q:
        for field, value in quick_search_filter(q).items():
            filters.setdefault(field, value)

    try:
        records, total = runtime.router.list_patients(
            filters=filters, sort=parse_sort(sort), offset=offset, limit=count
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return PatientPage(
        items=[PatientResponse(**to_flat_patient(r)) for r in records],
        itemCount=total,
    )


@router.get("/patients/{patient_id}", response_model=PatientResponse)
def get_patient(patient_id: str, runtime: CacheRuntime = Depends(get_runtime)):
    """Retrieve a patient from the cache, falling back to the FHIR server."""
    try:
        record = runtime.router.get_patient(patient_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Patient not found")
    except FhirError as exc:
        raise _remote_http_error(exc)
    return PatientResponse(**to_flat_patient(record))


@router.get("/patients/{patient_id}/fhir")
def get_patient_resource(patient_id: str, runtime: CacheRuntime = Depends(get_runtime)):
    """The cached FHIR Patient exactly as it was received."""
    try:
        record = runtime.router.get_patient(patient_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Patient not found")
    except FhirError as exc:
        raise _remote_http_error(exc)
    return Response(content=record.raw_resource, media_type="application/fhir+json")


@router.post("/patients", response_model=PatientResponse, status_code=201)
def create_patient(payload: PatientCreate, runtime: CacheRuntime = Depends(get_runtime)):
    try:
        record = runtime.router.create_patient(payload.model_dump(exclude_none=True))
    except ValidationFailedError as exc:
        raise _validation_http_error(exc)
    except FhirError as exc:
        raise _remote_http_error(exc)
    return PatientResponse(**to_flat_patient(record))


@router.put("/patients/{patient_id}", response_model=PatientResponse)
def update_patient(
    patient_id: str, payload: PatientUpdate, runtime: CacheRuntime = Depends(get_runtime)
):
    try:
        record = runtime.router.update_patient(patient_id, payload.model_dump(exclude_none=True))
    except ValidationFailedError as exc:
        raise _validation_http_error(exc)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Patient not found")
    except FhirError as exc:
        raise _remote_http_error(exc)
    return PatientResponse(**to_flat_patient(record))


@router.delete("/patients/{patient_id}", status_code=204)
def delete_patient(patient_id: str, runtime: CacheRuntime = Depends(get_runtime)):
    try:
        runtime.router.delete_patient(patient_id)
    except FhirError as exc:
        raise _remote_http_error(exc)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------

@router.post("/sync", response_model=SyncResponse)
def force_sync(runtime: CacheRuntime = Depends(get_runtime)):
    """Run a sync cycle now and report how many records it applied."""
    logger.info("Manual sync requested")
    try:
        result = runtime.scheduler.trigger_now()
    except SyncAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except SyncFailedError as exc:
        raise HTTPException(
            status_code=502,
            detail={"error": str(exc), "synced_count": exc.synced_count},
        )
    return SyncResponse(**result.to_dict())


@router.get("/sync/status", response_model=SyncStatusResponse)
def sync_status(runtime: CacheRuntime = Depends(get_runtime)):
    watermark = runtime.store.get_watermark()
    last = runtime.engine.last_result
    return SyncStatusResponse(
        state=runtime.engine.state.value,
        watermark=watermark,
        stale=runtime.scheduler.is_stale(watermark),
        scheduler_running=runtime.scheduler.running,
        cached_records=runtime.store.count(),
        last_result=SyncResponse(**last.to_dict()) if last else None,
    )


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

@router.get("/monitoring/api-log", response_model=list[ApiLogEntryResponse])
def api_log(runtime: CacheRuntime = Depends(get_runtime)):
    """Recent calls to the FHIR server, newest first."""
    return [ApiLogEntryResponse(**entry.to_dict()) for entry in runtime.api_log.entries()]


@router.delete("/monitoring/api-log", status_code=204)
def clear_api_log(runtime: CacheRuntime = Depends(get_runtime)):
    runtime.api_log.clear()
    return Response(status_code=204)
