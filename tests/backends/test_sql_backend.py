"""Tests for the SQL key-value backend and the cache_entries repository."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from tiercache.backends.sql_backend import SqlBackend
from tiercache.db.engine import get_session_factory, init_db
from tiercache.db.repositories import CacheEntryRepository
from tiercache.entry import CacheEntry
from tiercache.exceptions import BackendError
from tiercache.tiers.durable import DurableTier


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def sql_backend(session_factory) -> SqlBackend:
    return SqlBackend(session_factory)


class TestCacheEntryRepository:
    def test_upsert_insert_then_update(self, session_factory) -> None:
        repo = CacheEntryRepository(session_factory)
        repo.upsert("k", b"one")
        repo.upsert("k", b"two")
        assert repo.get("k") == b"two"

    def test_get_missing(self, session_factory) -> None:
        assert CacheEntryRepository(session_factory).get("nope") is None

    def test_delete(self, session_factory) -> None:
        repo = CacheEntryRepository(session_factory)
        repo.upsert("k", b"v")
        assert repo.delete("k") is True
        assert repo.delete("k") is False


class TestSqlBackend:
    def test_put_get_delete(self, sql_backend: SqlBackend) -> None:
        sql_backend.put("k", b"v")
        assert sql_backend.get("k") == b"v"
        assert sql_backend.delete("k") is True
        assert sql_backend.get("k") is None

    def test_ttl_ignored(self, sql_backend: SqlBackend) -> None:
        sql_backend.put("k", b"v", ttl_seconds=0.001)
        assert sql_backend.get("k") == b"v"

    def test_from_url_creates_schema(self, tmp_path) -> None:
        backend = SqlBackend.from_url(f"sqlite:///{tmp_path / 'cache.db'}")
        try:
            backend.put("k", b"v")
            assert backend.get("k") == b"v"
        finally:
            backend.close()
        assert (tmp_path / "cache.db").exists()

    def test_sqlalchemy_error_wrapped(self, session_factory, monkeypatch) -> None:
        backend = SqlBackend(session_factory)

        def boom(self, key):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(CacheEntryRepository, "get", boom)
        with pytest.raises(BackendError, match="SQL get failed"):
            backend.get("k")


class TestDurableTierOverSql:
    def test_versioned_round_trip(self, sql_backend: SqlBackend) -> None:
        tier = DurableTier(sql_backend)
        try:
            tier.put(CacheEntry(key="user:1", value=b"v1", version=1))
            tier.put(CacheEntry(key="user:1", value=b"v2", version=2))
            got = tier.get("user:1")
            assert got.value == b"v2"
            assert got.version == 2
        finally:
            tier.close()
