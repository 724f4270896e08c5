"""Deferred-durable delivery (write-back queue and worker)."""

from tiercache.writeback.queue import WriteBackQueue, WriteBackTask
from tiercache.writeback.worker import WriteBackConfig, WriteBackWorker

__all__ = [
    "WriteBackConfig",
    "WriteBackQueue",
    "WriteBackTask",
    "WriteBackWorker",
]
