"""Shared test doubles and fixtures for the tier hierarchy."""

import time
from collections import Counter
from typing import Optional

import pytest

from tiercache.backends.memory import InMemoryBackend
from tiercache.exceptions import BackendError
from tiercache.manager import CacheManager
from tiercache.writeback.worker import WriteBackConfig


class RecordingBackend(InMemoryBackend):
    """InMemoryBackend that counts calls and can be scripted to misbehave.

    Attributes:
        calls: Number of calls per operation (``get``/``put``/``delete``).
        fail_next: Remaining scripted failures per operation.
        down: When set, every call raises ``BackendError``.
        delay: Seconds slept before every call.
    """

    def __init__(self, name: str = "recording") -> None:
        super().__init__(name)
        self.calls: Counter = Counter()
        self.fail_next: Counter = Counter()
        self.down = False
        self.delay = 0.0

    def _before(self, op: str) -> None:
        self.calls[op] += 1
        if self.delay:
            time.sleep(self.delay)
        if self.down:
            raise BackendError(f"{self.name} is down")
        if self.fail_next[op] > 0:
            self.fail_next[op] -= 1
            raise BackendError(f"{self.name} scripted {op} failure")

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[bytes]:
        self._before("get")
        return super().get(key, timeout)

    def put(self, key, value, ttl_seconds=None, timeout=None) -> None:
        self._before("put")
        super().put(key, value, ttl_seconds, timeout)

    def delete(self, key: str, timeout: Optional[float] = None) -> bool:
        self._before("delete")
        return super().delete(key, timeout)

    def total_calls(self) -> int:
        return sum(self.calls.values())


@pytest.fixture
def l2_backend() -> RecordingBackend:
    return RecordingBackend("l2")


@pytest.fixture
def l3_backend() -> RecordingBackend:
    return RecordingBackend("l3")


@pytest.fixture
def fast_write_back() -> WriteBackConfig:
    """Write-back settings with millisecond backoff so tests stay quick."""
    return WriteBackConfig(
        max_attempts=3,
        base_delay_seconds=0.01,
        max_delay_seconds=0.05,
        poll_interval_ms=5,
    )


@pytest.fixture
def make_manager(l2_backend, l3_backend, fast_write_back):
    """Factory building a started CacheManager over the recording backends."""
    created = []

    def _make(**kwargs) -> CacheManager:
        kwargs.setdefault("write_back_config", fast_write_back)
        kwargs.setdefault("l2_timeout_seconds", 0.5)
        kwargs.setdefault("l3_timeout_seconds", 0.5)
        manager = CacheManager.configure(l2_backend, l3_backend, **kwargs)
        manager.start()
        created.append(manager)
        return manager

    yield _make
    for manager in created:
        # Tests may script backends to fail; recover them so shutdown drains
        l2_backend.down = l3_backend.down = False
        l2_backend.delay = l3_backend.delay = 0.0
        manager.close(timeout=2.0)
