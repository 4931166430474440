"""Pytest fixtures and configuration."""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from energy_miner.db.models import Base
from energy_miner.db.upsert import UpsertStore


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        self.now = value


class FakeSleep:
    """Records sleeps and advances the paired clock instead of blocking."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


T0 = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    """UpsertStore without backoff sleeps."""
    return UpsertStore(session_factory, max_attempts=3, min_wait=0, max_wait=0)
