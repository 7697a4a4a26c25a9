"""Shared pytest fixtures: in-memory SQLite store, fake FHIR server, fixed clock."""

from __future__ import annotations

import pytest

from app.models.database import build_engine
from app.services.local_store import LocalStore
from app.services.read_write_router import ReadWriteRouter
from app.services.scheduler import StalenessScheduler
from app.services.sync_engine import SyncEngine
from fakes import FakeClock, FakeFhirServer


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    engine = build_engine("sqlite://")
    local_store = LocalStore(engine)
    local_store.create_schema()
    yield local_store
    engine.dispose()


@pytest.fixture
def remote(clock) -> FakeFhirServer:
    return FakeFhirServer(clock)


@pytest.fixture
def sync_engine(store, remote, clock) -> SyncEngine:
    return SyncEngine(store, remote, page_size=2, clock=clock)


@pytest.fixture
def scheduler(sync_engine, clock):
    sched = StalenessScheduler(
        sync_engine,
        interval_seconds=3600,
        staleness_threshold_seconds=600,
        clock=clock,
    )
    yield sched
    sched.stop()


@pytest.fixture
def rw_router(store, remote, scheduler, clock) -> ReadWriteRouter:
    return ReadWriteRouter(store, remote, scheduler, clock=clock)
