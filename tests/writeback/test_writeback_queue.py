"""Tests for WriteBackQueue -- per-key FIFO with single-flight delivery."""

import threading
import time
from datetime import datetime, timedelta, timezone

from tiercache.writeback.queue import WriteBackQueue, WriteBackTask


def _task(key: str = "k", version: int = 1) -> WriteBackTask:
    return WriteBackTask(key=key, value=f"{key}@{version}".encode(), version=version)


class TestEnqueue:
    def test_sequence_assigned_in_order(self) -> None:
        q = WriteBackQueue()
        a = q.enqueue(_task("a"))
        b = q.enqueue(_task("b"))
        assert a.sequence < b.sequence
        assert len(q) == 2
        assert q.size("a") == 1

    def test_pending_for_key(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a", 1))
        q.enqueue(_task("b", 1))
        q.enqueue(_task("a", 2))
        assert [t.version for t in q.pending_for("a")] == [1, 2]


class TestAcquire:
    def test_oldest_ready_task_first(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a"))
        q.enqueue(_task("b"))
        assert q.acquire().key == "a"

    def test_same_key_is_single_flight(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a", 1))
        q.enqueue(_task("a", 2))
        first = q.acquire()
        assert first.version == 1
        assert q.acquire() is None
        q.complete(first)
        assert q.acquire().version == 2

    def test_other_keys_proceed_while_one_in_flight(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a"))
        q.enqueue(_task("b"))
        assert q.acquire().key == "a"
        assert q.acquire().key == "b"

    def test_retry_delays_task(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a"))
        task = q.acquire()
        later = datetime.now(timezone.utc) + timedelta(seconds=60)
        q.retry(task, later, "boom")
        assert task.last_error == "boom"
        assert q.acquire() is None
        assert q.acquire(now=later).task_id == task.task_id
        assert len(q) == 1

    def test_retrying_head_blocks_later_writes_for_same_key(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a", 1))
        q.enqueue(_task("a", 2))
        head = q.acquire()
        q.retry(head, datetime.now(timezone.utc) + timedelta(seconds=60), "down")
        assert q.acquire() is None


class TestDiscardAndDrain:
    def test_discard_drops_pending(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a", 1))
        q.enqueue(_task("a", 2))
        q.enqueue(_task("b", 1))
        dropped = q.discard("a")
        assert [t.version for t in dropped] == [1, 2]
        assert len(q) == 1
        assert q.discard("missing") == []

    def test_discard_keeps_in_flight_head(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("a", 1))
        q.enqueue(_task("a", 2))
        head = q.acquire()
        dropped = q.discard("a")
        assert [t.version for t in dropped] == [2]
        q.complete(head)
        assert len(q) == 0

    def test_drain_returns_in_enqueue_order(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task("b", 1))
        q.enqueue(_task("a", 1))
        q.enqueue(_task("b", 2))
        drained = q.drain()
        assert [(t.key, t.version) for t in drained] == [("b", 1), ("a", 1), ("b", 2)]
        assert len(q) == 0


class TestWaiting:
    def test_wait_empty_times_out(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task())
        assert q.wait_empty(timeout=0.05) is False

    def test_wait_empty_returns_when_completed(self) -> None:
        q = WriteBackQueue()
        q.enqueue(_task())

        def finish() -> None:
            time.sleep(0.05)
            q.complete(q.acquire())

        threading.Thread(target=finish).start()
        assert q.wait_empty(timeout=2.0) is True

    def test_wait_for_work_wakes_on_enqueue(self) -> None:
        q = WriteBackQueue()
        woke = threading.Event()

        def waiter() -> None:
            q.wait_for_work(5.0)
            woke.set()

        t = threading.Thread(target=waiter)
        t.start()
        time.sleep(0.05)
        q.enqueue(_task())
        assert woke.wait(2.0)
        t.join()
