"""
Key-value backend contract consumed by the L2 and L3 tier adapters.

Any store that can get, put (optionally with a TTL) and delete opaque
byte values by string key is pluggable.  Implementations raise
:class:`~tiercache.exceptions.BackendError` when the store fails; an
absent key is reported as ``None`` / ``False``, never as an error.
"""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueBackend(ABC):
    """Uniform contract for remote stores behind L2/L3."""

    name: str = "backend"

    @abstractmethod
    def get(self, key: str, timeout: Optional[float] = None) -> Optional[bytes]:
        """Return the stored bytes for ``key`` or ``None`` if absent."""

    @abstractmethod
    def put(
        self,
        key: str,
        value: bytes,
        ttl_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds`` if given."""

    @abstractmethod
    def delete(self, key: str, timeout: Optional[float] = None) -> bool:
        """Delete ``key``.  Returns ``True`` if something was removed."""

    def close(self) -> None:
        """Release connections held by the backend."""
        return None
