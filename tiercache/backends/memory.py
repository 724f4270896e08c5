"""
In-process key-value backend.

Useful for single-process deployments and local development where no
Redis or database is available.  Honors TTLs lazily on read.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from tiercache.backends.base import KeyValueBackend

logger = logging.getLogger(__name__)


class InMemoryBackend(KeyValueBackend):
    """Dictionary-backed store with optional per-key TTL.

    Args:
        name: Label used in log records.
    """

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._store: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[bytes]:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and time.monotonic() >= expires_at:
                del self._store[key]
                logger.debug("Backend entry expired", extra={"backend": self.name, "key": key})
                return None
            return value

    def put(
        self,
        key: str,
        value: bytes,
        ttl_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._store[key] = (value, expires_at)

    def delete(self, key: str, timeout: Optional[float] = None) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
