"""Tests for execution contexts and the readers-writer lock."""
import threading
import time

import pytest

from groundex.errors import DeadlineExceeded, RequestCancelled
from groundex.shared.context import ExecutionContext
from groundex.shared.rwlock import ReadWriteLock


class TestExecutionContext:
    def test_live_context(self):
        ctx = ExecutionContext()
        assert not ctx.done()
        assert ctx.error() is None
        assert ctx.remaining() is None
        ctx.raise_if_done()

    def test_cancel(self):
        ctx = ExecutionContext()
        ctx.cancel()
        assert ctx.done()
        assert ctx.cancelled()
        with pytest.raises(RequestCancelled):
            ctx.raise_if_done()

    def test_deadline(self):
        ctx = ExecutionContext(timeout=0.01)
        time.sleep(0.03)
        assert ctx.expired()
        assert isinstance(ctx.error(), DeadlineExceeded)

    def test_cancel_propagates_to_children(self):
        parent = ExecutionContext()
        child = parent.child()
        grandchild = child.child()
        parent.cancel()
        assert child.cancelled()
        assert grandchild.cancelled()

    def test_child_of_cancelled_parent_starts_cancelled(self):
        parent = ExecutionContext()
        parent.cancel()
        assert parent.child().cancelled()

    def test_child_cancel_does_not_affect_parent(self):
        parent = ExecutionContext()
        parent.child().cancel()
        assert not parent.done()

    def test_child_inherits_tighter_deadline(self):
        parent = ExecutionContext(timeout=0.5)
        child = parent.child(timeout=10)
        assert child.deadline == parent.deadline
        tight = parent.child(timeout=0.1)
        assert tight.deadline < parent.deadline

    def test_sleep_interrupted_by_cancel(self):
        ctx = ExecutionContext()
        threading.Timer(0.05, ctx.cancel).start()
        start = time.monotonic()
        assert ctx.sleep(5) is False
        assert time.monotonic() - start < 2

    def test_sleep_stops_at_deadline(self):
        ctx = ExecutionContext(timeout=0.05)
        start = time.monotonic()
        assert ctx.sleep(5) is False
        assert time.monotonic() - start < 2

    def test_sleep_completes(self):
        assert ExecutionContext().sleep(0.01) is True


class TestReadWriteLock:
    def test_concurrent_readers(self):
        lock = ReadWriteLock()
        inside = []
        barrier = threading.Barrier(3, timeout=2)

        def reader():
            with lock.read():
                inside.append(1)
                barrier.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(2)
        assert len(inside) == 3

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        def writer():
            with lock.write():
                events.append("w-start")
                time.sleep(0.05)
                events.append("w-end")

        t = threading.Thread(target=writer)
        t.start()
        time.sleep(0.01)
        with lock.read():
            events.append("r")
        t.join(2)
        assert events == ["w-start", "w-end", "r"]
