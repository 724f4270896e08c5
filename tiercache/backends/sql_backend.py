"""
SQL-backed key-value store for the durable tier (L3).

Wraps :class:`~tiercache.db.repositories.CacheEntryRepository`.  The
durable store has no TTL: entries persist until deleted or replaced.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from tiercache.backends.base import KeyValueBackend
from tiercache.db.engine import get_engine, get_session_factory, init_db
from tiercache.db.repositories import CacheEntryRepository, SessionFactory
from tiercache.exceptions import BackendError

logger = logging.getLogger(__name__)


class SqlBackend(KeyValueBackend):
    """Key-value backend over a relational table.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session.
    """

    name = "sql"

    def __init__(self, session_factory: SessionFactory) -> None:
        self._repo = CacheEntryRepository(session_factory)
        self._engine = None

    @classmethod
    def from_url(cls, database_url: str, pool_size: int = 10) -> "SqlBackend":
        """Create the engine, ensure the schema, and return a backend."""
        engine = get_engine(database_url, pool_size=pool_size)
        init_db(engine)
        backend = cls(get_session_factory(engine))
        backend._engine = engine
        return backend

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[bytes]:
        try:
            return self._repo.get(key)
        except SQLAlchemyError as e:
            logger.warning("SQL get failed", extra={"cache_key": key, "error": str(e)})
            raise BackendError(f"SQL get failed: {e}") from e

    def put(
        self,
        key: str,
        value: bytes,
        ttl_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if ttl_seconds:
            logger.warning(
                "TTL ignored by durable backend",
                extra={"cache_key": key, "ttl_seconds": ttl_seconds},
            )
        try:
            self._repo.upsert(key, value)
        except SQLAlchemyError as e:
            logger.error("SQL upsert failed", extra={"cache_key": key, "error": str(e)})
            raise BackendError(f"SQL upsert failed: {e}") from e

    def delete(self, key: str, timeout: Optional[float] = None) -> bool:
        try:
            return self._repo.delete(key)
        except SQLAlchemyError as e:
            logger.warning("SQL delete failed", extra={"cache_key": key, "error": str(e)})
            raise BackendError(f"SQL delete failed: {e}") from e

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
