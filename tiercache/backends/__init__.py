"""Key-value backends behind the distributed and durable tiers."""

from tiercache.backends.base import KeyValueBackend
from tiercache.backends.memory import InMemoryBackend
from tiercache.backends.redis_backend import RedisBackend
from tiercache.backends.sql_backend import SqlBackend

__all__ = ["KeyValueBackend", "InMemoryBackend", "RedisBackend", "SqlBackend"]
