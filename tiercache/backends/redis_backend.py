"""
Redis-backed key-value store for the distributed tier (L2).

Keys: ``{key_prefix}:{key}``.  TTLs are attached with ``SET ... PX`` so
Redis expires entries on its own; a missing key (evicted or expired)
is reported as ``None``.  Connection and protocol errors surface as
:class:`~tiercache.exceptions.BackendError`.
"""

import logging
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

from tiercache.backends.base import KeyValueBackend
from tiercache.exceptions import BackendError

logger = logging.getLogger(__name__)


class RedisBackend(KeyValueBackend):
    """Key-value backend over a shared Redis instance.

    Per-call ``timeout`` arguments are enforced by the tier adapter; the
    client itself is bounded by ``socket_timeout``.

    Args:
        redis_url: Redis connection URL (e.g. redis://localhost:6379/0).
        key_prefix: Prefix for all keys (default tiercache:l2).
        socket_timeout: Client-level socket timeout in seconds.
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "tiercache:l2",
        socket_timeout: Optional[float] = None,
        _redis_client: Optional[Any] = None,
    ) -> None:
        if _redis_client is not None:
            self._client = _redis_client
        else:
            self._client = redis.from_url(
                redis_url,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self._key_prefix = key_prefix.rstrip(":")

    def _key(self, key: str) -> str:
        """Return full Redis key for a cache key."""
        return f"{self._key_prefix}:{key}"

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[bytes]:
        try:
            data = self._client.get(self._key(key))
        except RedisError as e:
            logger.warning("Redis get failed", extra={"cache_key": key, "error": str(e)})
            raise BackendError(f"Redis get failed: {e}") from e
        if data is None:
            return None
        # decode_responses=True clients hand back str
        return data.encode("utf-8") if isinstance(data, str) else data

    def put(
        self,
        key: str,
        value: bytes,
        ttl_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        px = int(ttl_seconds * 1000) if ttl_seconds else None
        try:
            self._client.set(self._key(key), value, px=px)
        except RedisError as e:
            logger.error("Redis set failed", extra={"cache_key": key, "error": str(e)})
            raise BackendError(f"Redis set failed: {e}") from e
        logger.debug("Redis set", extra={"cache_key": key, "ttl_ms": px})

    def delete(self, key: str, timeout: Optional[float] = None) -> bool:
        try:
            deleted = self._client.delete(self._key(key))
        except RedisError as e:
            logger.warning("Redis delete failed", extra={"cache_key": key, "error": str(e)})
            raise BackendError(f"Redis delete failed: {e}") from e
        return bool(deleted)

    def clear(self) -> int:
        """Remove every key under our prefix.  Returns number of keys deleted."""
        try:
            keys = list(self._client.scan_iter(match=f"{self._key_prefix}:*"))
            if keys:
                self._client.delete(*keys)
        except RedisError as e:
            raise BackendError(f"Redis clear failed: {e}") from e
        logger.info("Redis keys cleared", extra={"entries_removed": len(keys)})
        return len(keys)

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as e:
            logger.warning("Redis close failed", extra={"error": str(e)})
