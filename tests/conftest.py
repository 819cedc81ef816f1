from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from botguard.errors import StoreUnavailable
from botguard.store import InMemoryKnownActorStore, InMemoryRequestStore, TrackedRequest
from botguard.store.sql import init_schema

START = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "user-agent": CHROME_UA,
    "accept-language": "en-GB,en;q=0.9",
    "accept-encoding": "gzip, deflate, br",
}


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FailingRequestStore:
    def insert(self, record):
        raise StoreUnavailable("database is down")

    def query(self, filters, order_by="timestamp", limit=None):
        raise StoreUnavailable("database is down")

    def count(self, filters):
        raise StoreUnavailable("database is down")

    def update(self, request_id, patch):
        raise StoreUnavailable("database is down")

    def update_where(self, filters, patch):
        raise StoreUnavailable("database is down")

    def delete_before(self, cutoff):
        raise StoreUnavailable("database is down")


class FailingActorStore:
    def get(self, ip_address):
        raise StoreUnavailable("database is down")

    def upsert(self, record):
        raise StoreUnavailable("database is down")

    def set_blocked(self, ip_address, blocked):
        raise StoreUnavailable("database is down")

    def all(self):
        raise StoreUnavailable("database is down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def request_store():
    return InMemoryRequestStore()


@pytest.fixture
def actor_store():
    return InMemoryKnownActorStore()


@pytest.fixture
def seed(request_store, clock):
    """Insert a tracked request ``ago`` before the current fake time."""

    def _seed(ip_address="198.51.100.7", ago=timedelta(0), **fields):
        fields.setdefault("user_agent", CHROME_UA)
        record = TrackedRequest(ip_address=ip_address, timestamp=clock() - ago, **fields)
        return request_store.insert(record)

    return _seed


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    yield engine
    engine.dispose()
