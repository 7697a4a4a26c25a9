"""Tests for the local store – runs against in-memory SQLite."""

from datetime import timedelta

import pytest

from app.services.encryption import EncryptionService
from app.services.fhir_mapping import build_cached_record
from app.services.local_store import LocalStore
from fakes import T0, make_patient_resource


def _record(patient_id="p-1", synced_at=T0, **kwargs):
    return build_cached_record(make_patient_resource(patient_id, **kwargs), synced_at=synced_at)


def _seed(store):
    people = [
        ("p-1", "Smith", "Anna", "female", "1980-02-01", "555-1000"),
        ("p-2", "Smithers", "Bob", "male", "1975-06-30", "555-2000"),
        ("p-3", "Jones", "Carla", "female", "1990-01-15", "020 7946 0000"),
        ("p-4", "Brown", "anna maria", "other", "1990-01-15", "555-4000"),
    ]
    for pid, family, given, gender, birth, phone in people:
        store.upsert(_record(pid, family=family, given=given, gender=gender, birth_date=birth, phone=phone))


def test_upsert_and_get_roundtrip(store):
    record = _record()
    store.upsert(record)

    cached = store.get("p-1")
    assert cached == record
    assert cached.resource["name"][0]["family"] == "Doe"


def test_upsert_is_idempotent(store):
    record = _record()
    store.upsert(record)
    first = store.query()
    store.upsert(record)
    second = store.query()

    assert first == second
    assert store.count() == 1


def test_upsert_replaces_whole_row(store):
    store.upsert(_record(family="Doe", phone="555-0100"))
    store.upsert(_record(family="Roe", phone="555-9999", synced_at=T0 + timedelta(minutes=5)))

    cached = store.get("p-1")
    assert cached.family == "Roe"
    assert cached.phone == "555-9999"
    assert cached.synced_at == T0 + timedelta(minutes=5)


def test_upsert_requires_identifier(store):
    resource = make_patient_resource()
    del resource["id"]
    with pytest.raises(ValueError):
        store.upsert(build_cached_record(resource, synced_at=T0))


def test_get_missing_returns_none(store):
    assert store.get("nope") is None


def test_delete_is_noop_when_absent(store):
    store.upsert(_record())
    store.delete("p-1")
    store.delete("p-1")
    assert store.get("p-1") is None


def test_name_filters_are_case_insensitive_substrings(store):
    _seed(store)

    records, total = store.query({"family": "SMITH"})
    assert [r.id for r in records] == ["p-1", "p-2"]
    assert total == 2

    records, _ = store.query({"name": "anna"})
    assert [r.id for r in records] == ["p-1", "p-4"]


def test_exact_filters_do_not_match_substrings(store):
    _seed(store)

    records, total = store.query({"gender": "male"})
    assert [r.id for r in records] == ["p-2"]
    assert total == 1

    records, _ = store.query({"birth_date": "1990-01-15"})
    assert [r.id for r in records] == ["p-3", "p-4"]

    _, total = store.query({"birth_date": "1990"})
    assert total == 0


def test_like_wildcards_are_literal(store):
    _seed(store)
    _, total = store.query({"family": "%"})
    assert total == 0


def test_unknown_filter_field_rejected(store):
    with pytest.raises(ValueError):
        store.query({"ssn": "123"})


def test_sort_with_id_tiebreak(store):
    _seed(store)

    records, _ = store.query(sort=[("birth_date", "desc")])
    # p-3 and p-4 share a birth date; id ascending breaks the tie
    assert [r.id for r in records] == ["p-3", "p-4", "p-1", "p-2"]

    records, _ = store.query(sort=[("gender", "asc"), ("family", "desc")])
    assert [r.id for r in records] == ["p-1", "p-3", "p-2", "p-4"]


def test_pagination_reports_total_of_all_matches(store):
    _seed(store)

    page, total = store.query(sort=[("family", "asc")], offset=1, limit=2)
    assert total == 4
    assert [r.family for r in page] == ["Jones", "Smith"]


def test_watermark_starts_null_and_is_monotonic(store):
    assert store.get_watermark() is None

    assert store.set_watermark(T0) == T0
    assert store.get_watermark() == T0

    later = T0 + timedelta(hours=1)
    store.set_watermark(later)
    assert store.get_watermark() == later

    # An earlier value is ignored
    assert store.set_watermark(T0) == later
    assert store.get_watermark() == later


def test_payload_encrypted_at_rest(store):
    from cryptography.fernet import Fernet

    encrypted_store = LocalStore(store.engine, encryption=EncryptionService(Fernet.generate_key()))
    record = _record()
    encrypted_store.upsert(record)

    # Same table through a store without the key sees ciphertext
    assert store.get("p-1").raw_resource != record.raw_resource
    assert encrypted_store.get("p-1").raw_resource == record.raw_resource
