"""
SQLAlchemy models for the durable tier.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from tiercache.db.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntryModel(Base):
    """Stored cache document.

    Attributes:
        key: Cache key (primary key).
        value: Serialized entry document (includes the version).
        updated_at: Last write timestamp.
    """

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
