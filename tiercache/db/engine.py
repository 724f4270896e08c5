"""
SQLAlchemy plumbing for the durable tier.

L3 documents live in one ``cache_entries`` table; the engine may point
at PostgreSQL, MySQL or a SQLite file.
"""

import logging
from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def get_engine(database_url: str, pool_size: int = 10) -> "Engine":
    """Build the engine behind :class:`~tiercache.backends.sql_backend.SqlBackend`.

    SQLite connections are opened with ``check_same_thread=False`` because
    L3 calls run on the tier's thread pool; other dialects get a pre-pinged
    pool of ``pool_size`` connections.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True, pool_size=pool_size)


def get_session_factory(engine: "Engine") -> sessionmaker[Session]:
    # Entries are read back after commit, so keep attributes loaded
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: "Engine") -> None:
    """Create ``cache_entries`` if missing."""
    from tiercache.db.models import CacheEntryModel  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info(
        "Durable tier schema ready",
        extra={"url": engine.url.render_as_string(hide_password=True)},
    )
