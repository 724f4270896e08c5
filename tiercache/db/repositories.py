"""
Repository for cache entries (durable tier).

Used by :class:`~tiercache.backends.sql_backend.SqlBackend`.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from tiercache.db.models import CacheEntryModel

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class CacheEntryRepository:
    """Repository for the cache_entries table.

    Args:
        session_factory: Callable that returns a new Session (e.g. from get_session_factory).
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[bytes]:
        """Fetch the stored document for ``key``.

        Returns:
            The stored bytes, or None if the key is absent.
        """
        session: Session = self._session_factory()
        try:
            row = session.get(CacheEntryModel, key)
            return bytes(row.value) if row is not None else None
        finally:
            session.close()

    def upsert(self, key: str, value: bytes) -> None:
        """Insert or replace the document for ``key`` in one transaction."""
        session: Session = self._session_factory()
        try:
            row = session.get(CacheEntryModel, key)
            if row is None:
                session.add(CacheEntryModel(key=key, value=value))
            else:
                row.value = value
            session.commit()
            logger.debug("Cache entry upserted", extra={"cache_key": key})
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, key: str) -> bool:
        """Delete the row for ``key``.

        Returns:
            True if a row was deleted, False if not found.
        """
        session: Session = self._session_factory()
        try:
            result = session.execute(delete(CacheEntryModel).where(CacheEntryModel.key == key))
            session.commit()
            return bool(result.rowcount)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
