"""
Conversion between FHIR Patient resources and the flat cached projection.

Also holds the search vocabulary shared by the API and the local store, so a
query answered from the cache uses the same parameter names the FHIR server
would accept.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

from app.models.records import CachedRecord

# FHIR search parameter -> flattened field
SEARCH_PARAM_TO_FIELD: dict[str, str] = {
    "_id": "id",
    "name": "name",
    "family": "family",
    "given": "given",
    "telecom": "phone",
    "phone": "phone",
    "gender": "gender",
    "birthdate": "birth_date",
}

# FHIR _sort value -> flattened field
SORT_PARAM_TO_FIELD: dict[str, str] = {
    "_id": "id",
    "name": "name",
    "family": "family",
    "given": "given",
    "telecom": "phone",
    "phone": "phone",
    "gender": "gender",
    "birthdate": "birth_date",
    "_lastUpdated": "last_updated",
}

_PHONE_LIKE = re.compile(r"[0-9\s\-+()]+")


def parse_instant(value: str | None) -> datetime | None:
    """Parse a FHIR instant (``2024-05-01T10:20:30.123Z``) into aware UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    """Render a datetime as a FHIR instant in UTC with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def _official_name(resource: dict[str, Any]) -> dict[str, Any]:
    names = resource.get("name") or []
    for name in names:
        if name.get("use") == "official":
            return name
    return names[0] if names else {}


def flatten_patient(resource: dict[str, Any]) -> dict[str, str]:
    """Derive the flattened search/sort fields from a Patient resource."""
    official = _official_name(resource)
    family = official.get("family") or ""
    given = " ".join(official.get("given") or [])
    display = official.get("text") or " ".join(p for p in (given, family) if p) or "Unknown"

    phone = ""
    for contact in resource.get("telecom") or []:
        if contact.get("system") == "phone":
            phone = contact.get("value") or ""
            break

    return {
        "id": resource.get("id") or "",
        "given": given,
        "family": family,
        "name": display,
        "gender": resource.get("gender") or "",
        "birth_date": resource.get("birthDate") or "",
        "phone": phone,
    }


def serialize_resource(resource: dict[str, Any]) -> str:
    return json.dumps(resource, ensure_ascii=False, separators=(",", ":"))


def build_cached_record(
    resource: dict[str, Any],
    synced_at: datetime,
    raw: str | None = None,
) -> CachedRecord:
    """
    Project a remote Patient into a CachedRecord.

    ``raw`` is the payload text exactly as received when the caller has it
    (single-resource responses); otherwise the parsed resource is serialized.
    """
    flat = flatten_patient(resource)
    return CachedRecord(
        id=flat["id"],
        given=flat["given"],
        family=flat["family"],
        name=flat["name"],
        gender=flat["gender"],
        birth_date=flat["birth_date"],
        phone=flat["phone"],
        raw_resource=raw if raw is not None else serialize_resource(resource),
        last_updated=parse_instant((resource.get("meta") or {}).get("lastUpdated")),
        synced_at=synced_at,
    )


def flat_to_fhir(form: dict[str, Any]) -> dict[str, Any]:
    """Build a (possibly partial) Patient resource from flat form fields."""
    resource: dict[str, Any] = {"resourceType": "Patient"}

    if "family" in form or "given" in form:
        resource["name"] = [
            {
                "use": "official",
                "family": form.get("family") or "",
                "given": (form.get("given") or "").split(),
            }
        ]
    if "gender" in form:
        resource["gender"] = form["gender"]
    if "birthDate" in form:
        resource["birthDate"] = form["birthDate"]
    if "phone" in form:
        resource["telecom"] = [{"system": "phone", "value": form["phone"], "use": "mobile"}]
    return resource


def merge_into_resource(
    existing: dict[str, Any], form: dict[str, Any], patient_id: str
) -> dict[str, Any]:
    """
    Overlay a flat update onto the server's current resource.

    A name edit that supplies only one of family/given keeps the other part
    from the existing official name.
    """
    form = dict(form)
    if ("family" in form) != ("given" in form):
        current = flatten_patient(existing)
        form.setdefault("family", current["family"])
        form.setdefault("given", current["given"])

    merged = {**existing, **flat_to_fhir(form)}
    merged["resourceType"] = "Patient"
    merged["id"] = patient_id
    return merged


def to_flat_patient(record: CachedRecord) -> dict[str, Any]:
    """Flat representation returned to the presentation layer."""
    return {
        "id": record.id,
        "name": record.name,
        "family": record.family,
        "given": record.given,
        "gender": record.gender,
        "birthDate": record.birth_date,
        "phone": record.phone,
        "lastUpdated": record.last_updated,
        "syncedAt": record.synced_at,
    }


def quick_search_filter(term: str) -> dict[str, str]:
    """Free-text search: phone-looking terms match the phone, anything else the name."""
    term = term.strip()
    if not term:
        return {}
    if _PHONE_LIKE.fullmatch(term):
        return {"phone": term}
    return {"name": term}


def parse_sort(value: str | None) -> list[tuple[str, str]]:
    """Parse a FHIR ``_sort`` value (``family,-birthdate``) into (field, direction) pairs."""
    if not value:
        return []
    sort: list[tuple[str, str]] = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        direction = "desc" if part.startswith("-") else "asc"
        param = part.lstrip("-")
        if param not in SORT_PARAM_TO_FIELD:
            raise ValueError(f"Unsupported sort parameter: {param}")
        sort.append((SORT_PARAM_TO_FIELD[param], direction))
    return sort
