"""Shared pytest fixtures."""

import os
from datetime import datetime, timedelta, timezone

import pytest

from hrsync.db import DatabaseConnection, DuckDBConversationStore, InMemoryConversationStore
from hrsync.services.audit import AuditService


START = datetime(2024, 3, 4, 9, 0, 0, tzinfo=timezone.utc)

MONGODB_URL_ENV = "HRSYNC_TEST_MONGODB_URL"


class FakeClock:
    """Manually advanced clock for time-dependent services."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Provide a FakeClock starting at START."""
    return FakeClock()


@pytest.fixture
def db_conn(tmp_path):
    """Provide a fresh database connection."""
    db = DatabaseConnection(str(tmp_path / "test.db"))
    yield db
    db.close()


@pytest.fixture
def memory_store():
    """Provide an empty in-memory store."""
    return InMemoryConversationStore()


@pytest.fixture
def duckdb_store(db_conn):
    """Provide a DuckDB store on a temporary file."""
    return DuckDBConversationStore(db_conn)


async def _mongo_store():
    from hrsync.db import MongoConversationStore

    database = f"hrsync_test_{os.getpid()}"
    store = MongoConversationStore.from_url(os.environ[MONGODB_URL_ENV], database)
    await store.ensure_indexes()
    return store, database


_BACKENDS = ["duckdb", "memory"]
if os.environ.get(MONGODB_URL_ENV):
    _BACKENDS.append("mongodb")


@pytest.fixture(params=_BACKENDS)
async def store(request, tmp_path):
    """Provide every available store backend in turn."""
    if request.param == "duckdb":
        db = DatabaseConnection(str(tmp_path / "store.db"))
        yield DuckDBConversationStore(db)
        db.close()
    elif request.param == "memory":
        yield InMemoryConversationStore()
    else:
        mongo, database = await _mongo_store()
        yield mongo
        await mongo.client.drop_database(database)
        await mongo.close()


@pytest.fixture
def audit(tmp_path):
    """Provide an AuditService writing under tmp_path."""
    return AuditService(str(tmp_path / "audit"))
