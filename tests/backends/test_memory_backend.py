"""Tests for the in-process key-value backend."""

import time

from tiercache.backends.memory import InMemoryBackend


class TestInMemoryBackend:
    def test_put_get_delete(self) -> None:
        backend = InMemoryBackend()
        backend.put("k", b"v")
        assert backend.get("k") == b"v"
        assert backend.delete("k") is True
        assert backend.delete("k") is False
        assert backend.get("k") is None

    def test_ttl_expiry(self) -> None:
        backend = InMemoryBackend()
        backend.put("k", b"v", ttl_seconds=0.05)
        assert backend.get("k") == b"v"
        time.sleep(0.1)
        assert backend.get("k") is None
        assert len(backend) == 0

    def test_no_ttl_persists(self) -> None:
        backend = InMemoryBackend()
        backend.put("k", b"v", ttl_seconds=None)
        assert backend.get("k") == b"v"
        assert len(backend) == 1
