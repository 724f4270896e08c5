"""
Background delivery of write-back tasks to the durable tier.

Runs one or more daemon threads that claim tasks from the
:class:`~tiercache.writeback.queue.WriteBackQueue` and hand them to a
delivery callback.  Failed attempts are retried with exponential
backoff; once ``max_attempts`` is exhausted the task is reported as a
durability failure through the ``on_failure`` callback.  No task is
ever dropped without either reaching L3 or being reported.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from tiercache.exceptions import DurabilityFailureError, VersionConflictError, WriteBackError
from tiercache.writeback.queue import WriteBackQueue, WriteBackTask

logger = logging.getLogger(__name__)

# Delivery callback: raises on failure
Deliver = Callable[[WriteBackTask], None]
FailureHandler = Callable[[WriteBackTask, DurabilityFailureError], None]


class WriteBackConfig(BaseModel):
    """Configuration for the write-back worker.

    Attributes:
        max_attempts: Delivery attempts before a task is reported as a
            durability failure.
        base_delay_seconds: Backoff before the second attempt; doubles
            after every failure.
        max_delay_seconds: Upper bound for a single backoff.
        workers: Number of delivery threads.
        poll_interval_ms: How long an idle worker sleeps between checks.
    """

    max_attempts: int = Field(default=5, ge=1)
    base_delay_seconds: float = Field(default=0.5, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    workers: int = Field(default=1, ge=1)
    poll_interval_ms: int = Field(default=50, ge=1)

    def backoff(self, attempts: int) -> float:
        """Delay after ``attempts`` failed attempts: base * 2**(attempts-1), capped."""
        return min(self.base_delay_seconds * (2 ** max(attempts - 1, 0)), self.max_delay_seconds)


class WriteBackWorker:
    """Delivers queued writes to L3 from background threads.

    Args:
        queue: The shared write-back queue.
        deliver: Callback writing one task to the durable tier; raises
            on failure.
        config: Retry and threading configuration.
        on_failure: Called once per task whose retries were exhausted.
        on_delivered: Called once per task that reached L3.
    """

    def __init__(
        self,
        queue: WriteBackQueue,
        deliver: Deliver,
        config: Optional[WriteBackConfig] = None,
        on_failure: Optional[FailureHandler] = None,
        on_delivered: Optional[Callable[[WriteBackTask], None]] = None,
    ) -> None:
        self._queue = queue
        self._deliver = deliver
        self._config = config or WriteBackConfig()
        self._on_failure = on_failure
        self._on_delivered = on_delivered
        self._poll_interval_s = self._config.poll_interval_ms / 1000.0

        self._threads: List[threading.Thread] = []
        self._running = threading.Event()
        self._lock = threading.Lock()

        # Counters
        self._stats_lock = threading.Lock()
        self._delivered: int = 0
        self._retries: int = 0
        self._superseded: int = 0
        self._failures: int = 0

        logger.info(
            "WriteBackWorker initialised",
            extra={
                "workers": self._config.workers,
                "max_attempts": self._config.max_attempts,
                "base_delay_seconds": self._config.base_delay_seconds,
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the delivery threads.

        Raises:
            WriteBackError: If the worker is already running.
        """
        with self._lock:
            if self._running.is_set():
                raise WriteBackError("WriteBackWorker is already running")
            self._running.set()
            self._threads = [
                threading.Thread(
                    target=self._run_loop,
                    name=f"tiercache-writeback-{idx}",
                    daemon=True,
                )
                for idx in range(self._config.workers)
            ]
            for thread in self._threads:
                thread.start()
            logger.info("WriteBackWorker started")

    def stop(self, timeout: float = 5.0, drain: bool = True) -> List[WriteBackTask]:
        """Stop the worker.

        With ``drain=True`` waits up to ``timeout`` seconds for the queue
        to empty first.  Tasks still queued afterwards are reported as
        durability failures rather than dropped.

        Returns:
            Tasks that were reported as failures because of the shutdown.
        """
        with self._lock:
            if not self._running.is_set():
                return []
            if drain:
                if not self._queue.wait_empty(timeout):
                    logger.warning(
                        "Write-back queue not empty at shutdown",
                        extra={"queue_depth": self._queue.size()},
                    )
            self._running.clear()

        self._queue.wake()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []

        abandoned = self._queue.drain()
        for task in abandoned:
            self._report_failure(task, "write-back worker stopped before delivery")
        logger.info("WriteBackWorker stopped", extra={"abandoned": len(abandoned)})
        return abandoned

    @property
    def is_running(self) -> bool:
        """Whether the delivery threads are active."""
        return self._running.is_set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def process_once(self, now: Optional[datetime] = None) -> bool:
        """Attempt delivery of one ready task on the calling thread.

        Returns:
            ``True`` if a task was attempted.
        """
        task = self._queue.acquire(now)
        if task is None:
            return False
        self._attempt(task)
        return True

    def stats(self) -> Dict[str, Any]:
        """Return worker statistics."""
        with self._stats_lock:
            return {
                "running": self._running.is_set(),
                "delivered": self._delivered,
                "retries": self._retries,
                "superseded": self._superseded,
                "failures": self._failures,
                "queue_depth": self._queue.size(),
            }

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Delivery loop running in a daemon thread."""
        logger.debug("Write-back loop started")
        while self._running.is_set():
            try:
                if not self.process_once():
                    self._queue.wait_for_work(self._poll_interval_s)
            except Exception as exc:
                logger.error(
                    "Write-back loop iteration failed",
                    extra={"error": str(exc)},
                    exc_info=True,
                )
                self._queue.wait_for_work(self._poll_interval_s)

    def _attempt(self, task: WriteBackTask) -> None:
        task.attempts += 1
        try:
            self._deliver(task)
        except VersionConflictError as exc:
            # L3 already holds a newer version
            self._queue.complete(task)
            with self._stats_lock:
                self._superseded += 1
            logger.info(
                "Write-back superseded by newer durable version",
                extra={"cache_key": task.key, "version": task.version, "stored_version": exc.stored_version},
            )
            return
        except Exception as exc:
            if task.attempts >= self._config.max_attempts:
                self._report_failure(task, str(exc))
                self._queue.complete(task)
                return
            delay = self._config.backoff(task.attempts)
            self._queue.retry(
                task,
                datetime.now(timezone.utc) + timedelta(seconds=delay),
                str(exc),
            )
            with self._stats_lock:
                self._retries += 1
            logger.warning(
                "Write-back attempt failed; retrying",
                extra={
                    "cache_key": task.key,
                    "attempt": task.attempts,
                    "retry_in_seconds": delay,
                    "error": str(exc),
                },
            )
            return

        with self._stats_lock:
            self._delivered += 1
        logger.debug(
            "Write-back delivered",
            extra={"cache_key": task.key, "version": task.version, "attempts": task.attempts},
        )
        try:
            if self._on_delivered is not None:
                self._on_delivered(task)
        finally:
            self._queue.complete(task)

    def _report_failure(self, task: WriteBackTask, reason: str) -> None:
        error = DurabilityFailureError(task.key, task.version, task.attempts, reason)
        with self._stats_lock:
            self._failures += 1
        logger.error(
            "Durability failure",
            extra={
                "cache_key": task.key,
                "version": task.version,
                "attempts": task.attempts,
                "error": reason,
            },
        )
        if self._on_failure is None:
            return
        try:
            self._on_failure(task, error)
        except Exception as exc:
            logger.error(
                "Durability failure handler raised",
                extra={"cache_key": task.key, "error": str(exc)},
                exc_info=True,
            )
