"""
Core data records shared by every tier.

:class:`CacheEntry` is the unit stored in each tier, :class:`Tier`
names a level of the hierarchy, and :class:`GetResult` is what the
manager hands back to callers.  Remote tiers persist entries as JSON
documents produced by :func:`encode_entry`.
"""

import base64
import json
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Tier(str, Enum):
    """A level of the cache hierarchy (``NONE`` marks a full miss)."""

    L1 = "l1"
    L2 = "l2"
    L3 = "l3"
    NONE = "none"


class CacheEntry(BaseModel):
    """A single cached value.

    Attributes:
        key: Entry identity, unique per tier.
        value: Opaque payload.
        version: Monotonic version; a tier never replaces a higher
            version with a lower one.
        expires_at: UTC instant after which the entry is treated as
            absent.  ``None`` means no expiry.
    """

    key: str = Field(min_length=1)
    value: bytes
    version: int = Field(ge=0)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at


class GetResult(BaseModel):
    """Outcome of a manager lookup.

    Attributes:
        found: Whether any tier returned the key.
        value: The cached payload on a hit.
        version: Version of the returned entry on a hit.
        hit_tier: Tier that answered, ``Tier.NONE`` on a full miss.
    """

    found: bool = False
    value: Optional[bytes] = None
    version: Optional[int] = None
    hit_tier: Tier = Tier.NONE


class VersionClock:
    """Issues strictly increasing versions based on wall-clock nanoseconds.

    Wall-clock time keeps versions comparable across processes that
    share L2/L3; the lock forces strict monotonicity inside a process
    even when the clock stalls or steps backwards.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = 0

    def next(self) -> int:
        with self._lock:
            self._last = max(time.time_ns(), self._last + 1)
            return self._last


def encode_entry(entry: CacheEntry) -> bytes:
    """Serialize an entry to the JSON document stored by remote backends."""
    doc = {
        "key": entry.key,
        "version": entry.version,
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
        "value": base64.b64encode(entry.value).decode("ascii"),
    }
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


def decode_entry(data: bytes) -> CacheEntry:
    """Deserialize a document written by :func:`encode_entry`.

    Raises:
        ValueError: If the document is malformed.
    """
    try:
        doc = json.loads(data)
        expires_at = doc.get("expires_at")
        return CacheEntry(
            key=doc["key"],
            value=base64.b64decode(doc["value"]),
            version=doc["version"],
            expires_at=(
                datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
                if expires_at
                else None
            ),
        )
    except (KeyError, TypeError, AttributeError, json.JSONDecodeError) as exc:
        raise ValueError(f"Malformed cache document: {exc}") from exc
