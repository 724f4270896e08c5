"""Database layer for the durable tier.

Provides engine, session, model, and repository for cache entries.
"""

from tiercache.db.engine import Base, get_engine, get_session_factory, init_db
from tiercache.db.models import CacheEntryModel
from tiercache.db.repositories import CacheEntryRepository

__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "init_db",
    "CacheEntryModel",
    "CacheEntryRepository",
]
