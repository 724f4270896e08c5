"""
Thread-safe write-back queue for deferred L3 delivery.

Tasks are grouped per key.  A key is handed to at most one worker at a
time and only its oldest task is deliverable, so writes for the same
key reach L3 in the order they were enqueued.  Different keys are
independent and may complete out of order.  All mutations are
protected by a ``threading.Condition`` shared with waiting workers.
"""

import itertools
import logging
import threading
import time
import uuid
from collections import OrderedDict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WriteBackTask(BaseModel):
    """A write accepted by the fast tiers but not yet durable.

    Attributes:
        task_id: Unique identifier for the task.
        key: Cache key.
        value: Payload to persist.
        version: Version of the accepted write.
        attempts: Delivery attempts made so far.
        enqueued_at: UTC timestamp when the task entered the queue.
        next_retry_at: Earliest UTC time the next attempt may run.
        last_error: Error message from the most recent failed attempt.
        sequence: Global enqueue order, used to keep delivery FIFO.
    """

    task_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    key: str
    value: bytes
    version: int
    attempts: int = 0
    enqueued_at: datetime = Field(default_factory=_utcnow)
    next_retry_at: datetime = Field(default_factory=_utcnow)
    last_error: Optional[str] = None
    sequence: int = 0


class WriteBackQueue:
    """Per-key FIFO queue with single-flight delivery per key.

    Thread safety:
        Every public method acquires the internal condition's lock
        before reading or mutating state.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._pending: "OrderedDict[str, Deque[WriteBackTask]]" = OrderedDict()
        self._in_flight: Set[str] = set()
        self._size = 0
        self._seq = itertools.count(1)
        logger.info("WriteBackQueue initialised")

    def enqueue(self, task: WriteBackTask) -> WriteBackTask:
        """Append ``task`` behind any earlier tasks for the same key."""
        with self._cond:
            task.sequence = next(self._seq)
            self._pending.setdefault(task.key, deque()).append(task)
            self._size += 1
            logger.debug(
                "Write-back task enqueued",
                extra={
                    "cache_key": task.key,
                    "version": task.version,
                    "queue_depth": self._size,
                },
            )
            self._cond.notify_all()
        return task

    def acquire(self, now: Optional[datetime] = None) -> Optional[WriteBackTask]:
        """Claim the oldest deliverable task.

        A task is deliverable when it heads its key's queue, its key is
        not already claimed, and its retry time has passed.  The task
        stays queued until :meth:`complete` or :meth:`retry` is called.

        Returns:
            The claimed task, or ``None`` if nothing is ready.
        """
        now = now or _utcnow()
        with self._cond:
            best: Optional[WriteBackTask] = None
            for key, tasks in self._pending.items():
                if key in self._in_flight or not tasks:
                    continue
                head = tasks[0]
                if head.next_retry_at > now:
                    continue
                if best is None or head.sequence < best.sequence:
                    best = head
            if best is not None:
                self._in_flight.add(best.key)
            return best

    def complete(self, task: WriteBackTask) -> None:
        """Remove a claimed task (delivered, or given up on) and release its key."""
        with self._cond:
            tasks = self._pending.get(task.key)
            if tasks and tasks[0].task_id == task.task_id:
                tasks.popleft()
                self._size -= 1
                if not tasks:
                    del self._pending[task.key]
            self._in_flight.discard(task.key)
            self._cond.notify_all()

    def retry(self, task: WriteBackTask, next_retry_at: datetime, error: str) -> None:
        """Keep a claimed task at the head of its key and release the key."""
        with self._cond:
            task.next_retry_at = next_retry_at
            task.last_error = error
            self._in_flight.discard(task.key)
            self._cond.notify_all()

    def discard(self, key: str) -> List[WriteBackTask]:
        """Drop unclaimed tasks for ``key`` (used when the key is removed).

        A task already claimed by a worker is left to finish.

        Returns:
            The dropped tasks.
        """
        with self._cond:
            tasks = self._pending.get(key)
            if not tasks:
                return []
            keep: Deque[WriteBackTask] = deque()
            if key in self._in_flight:
                keep.append(tasks.popleft())
            dropped = list(tasks)
            self._size -= len(dropped)
            if keep:
                self._pending[key] = keep
            else:
                del self._pending[key]
            self._cond.notify_all()
        if dropped:
            logger.info(
                "Write-back tasks discarded",
                extra={"cache_key": key, "count": len(dropped)},
            )
        return dropped

    def drain(self) -> List[WriteBackTask]:
        """Remove and return every unclaimed task (shutdown path)."""
        with self._cond:
            drained: List[WriteBackTask] = []
            for key in list(self._pending):
                tasks = self._pending[key]
                keep: Deque[WriteBackTask] = deque()
                if key in self._in_flight and tasks:
                    keep.append(tasks.popleft())
                drained.extend(tasks)
                if keep:
                    self._pending[key] = keep
                else:
                    del self._pending[key]
            self._size -= len(drained)
            self._cond.notify_all()
            return sorted(drained, key=lambda t: t.sequence)

    def wake(self) -> None:
        """Wake every thread blocked in :meth:`wait_for_work`."""
        with self._cond:
            self._cond.notify_all()

    def wait_for_work(self, timeout: float) -> None:
        """Block up to ``timeout`` seconds or until the queue changes."""
        with self._cond:
            self._cond.wait(timeout)

    def wait_empty(self, timeout: Optional[float] = None) -> bool:
        """Block until every task has been completed.

        Returns:
            ``True`` if the queue emptied, ``False`` on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._size > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def pending_for(self, key: str) -> List[WriteBackTask]:
        """Snapshot of queued tasks for ``key`` (oldest first)."""
        with self._cond:
            return list(self._pending.get(key, ()))

    def size(self, key: Optional[str] = None) -> int:
        """Return the number of queued tasks, overall or for one key."""
        with self._cond:
            if key is not None:
                return len(self._pending.get(key, ()))
            return self._size

    def __len__(self) -> int:
        return self.size()
