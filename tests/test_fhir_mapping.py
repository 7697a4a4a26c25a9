"""Tests for FHIR <-> flat Patient conversion and the search vocabulary."""

from datetime import datetime, timezone

import pytest

from app.services.fhir_mapping import (
    build_cached_record,
    flat_to_fhir,
    flatten_patient,
    format_instant,
    merge_into_resource,
    parse_instant,
    parse_sort,
    quick_search_filter,
)
from fakes import T0, make_patient_resource


def test_official_name_preferred():
    resource = {
        "resourceType": "Patient",
        "id": "p-1",
        "name": [
            {"use": "nickname", "given": ["Jo"]},
            {"use": "official", "family": "Doe", "given": ["Jane", "Q"]},
        ],
    }
    flat = flatten_patient(resource)
    assert flat["family"] == "Doe"
    assert flat["given"] == "Jane Q"
    assert flat["name"] == "Jane Q Doe"


def test_name_text_wins_and_missing_name_is_unknown():
    with_text = {"id": "a", "name": [{"text": "Dr. J. Doe", "family": "Doe"}]}
    assert flatten_patient(with_text)["name"] == "Dr. J. Doe"
    assert flatten_patient({"id": "b"})["name"] == "Unknown"


def test_phone_is_first_phone_telecom():
    resource = {
        "id": "p-1",
        "telecom": [
            {"system": "email", "value": "jane@example.org"},
            {"system": "phone", "value": "555-0100"},
            {"system": "phone", "value": "555-0200"},
        ],
    }
    assert flatten_patient(resource)["phone"] == "555-0100"


def test_cached_record_keeps_raw_text_and_last_updated():
    resource = make_patient_resource()
    raw = '{"resourceType": "Patient",   "id": "p-1"}'
    record = build_cached_record(resource, synced_at=T0, raw=raw)

    assert record.raw_resource == raw
    assert record.last_updated == T0
    assert record.synced_at == T0


def test_flat_to_fhir_builds_official_name_and_mobile_phone():
    resource = flat_to_fhir(
        {"family": "Doe", "given": "Jane  Q", "gender": "female", "birthDate": "1990-01-15", "phone": "555"}
    )
    assert resource["name"] == [{"use": "official", "family": "Doe", "given": ["Jane", "Q"]}]
    assert resource["telecom"] == [{"system": "phone", "value": "555", "use": "mobile"}]
    assert resource["birthDate"] == "1990-01-15"


def test_merge_keeps_unrelated_fields():
    existing = make_patient_resource(given="Jane")
    existing["address"] = [{"city": "Leeds"}]

    merged = merge_into_resource(existing, {"family": "Roe"}, "p-1")

    assert merged["id"] == "p-1"
    assert merged["address"] == [{"city": "Leeds"}]
    assert merged["name"][0]["family"] == "Roe"
    assert merged["name"][0]["given"] == ["Jane"]
    assert merged["gender"] == "female"


def test_instants_roundtrip_in_utc():
    assert parse_instant("2024-05-01T10:20:30.123Z") == datetime(
        2024, 5, 1, 10, 20, 30, 123000, tzinfo=timezone.utc
    )
    assert parse_instant("2024-05-01T12:20:30+02:00") == datetime(
        2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc
    )
    assert parse_instant(None) is None
    assert format_instant(T0) == "2024-01-01T12:00:00.000Z"


def test_quick_search_routes_phone_like_terms():
    assert quick_search_filter("555-0100") == {"phone": "555-0100"}
    assert quick_search_filter(" smith ") == {"name": "smith"}
    assert quick_search_filter("  ") == {}


def test_parse_sort():
    assert parse_sort("family,-birthdate") == [("family", "asc"), ("birth_date", "desc")]
    assert parse_sort(None) == []
    with pytest.raises(ValueError):
        parse_sort("ssn")
