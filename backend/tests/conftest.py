from __future__ import annotations

import random

import pytest

from fakes import FakeClock, InMemoryRepository, RecordingScheduler, make_assessment
from skillcheck.models import Assessment
from skillcheck.services.locks import CandidateLocks
from skillcheck.services.scoring import ScoringFinalizer
from skillcheck.services.session_engine import SessionEngine


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def scheduler():
    recorder = RecordingScheduler()
    yield recorder
    recorder.close()


@pytest.fixture
def assessment(repository: InMemoryRepository) -> Assessment:
    created = make_assessment()
    repository.assessments[created.id] = created
    return created


@pytest.fixture
def finalizer(repository: InMemoryRepository, scheduler: RecordingScheduler, clock: FakeClock) -> ScoringFinalizer:
    return ScoringFinalizer(repository, scheduler=scheduler, clock=clock)


@pytest.fixture
def locks() -> CandidateLocks:
    return CandidateLocks()


@pytest.fixture
def engine(repository, finalizer, clock, locks):
    return SessionEngine(repository, finalizer, rng=random.Random(7), clock=clock, locks=locks)
