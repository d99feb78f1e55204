"""Cancellation and deadline propagation for blocking work.

An ``ExecutionContext`` is handed to everything that may block (provider
calls, backoff sleeps, alignment scans, progress tickers). Child contexts end
when their parent ends and may carry a tighter deadline of their own.
"""

from __future__ import annotations

import threading
import time

from ..errors import DeadlineExceeded, RequestCancelled


class ExecutionContext:
    """Cooperative cancellation token with an optional monotonic deadline."""

    def __init__(self, timeout: float | None = None, parent: ExecutionContext | None = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._cancelled = False
        self._children: list[ExecutionContext] = []
        self.parent = parent

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        if parent is not None:
            parent._attach(self)

    def _attach(self, child: ExecutionContext) -> None:
        with self._lock:
            self._children.append(child)
            cancelled = self._cancelled
        if cancelled:
            child.cancel()

    def _detach(self, child: ExecutionContext) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def child(self, timeout: float | None = None) -> ExecutionContext:
        return ExecutionContext(timeout=timeout, parent=self)

    def release(self) -> None:
        """Detach from the parent once a child context is no longer needed."""
        if self.parent is not None:
            self.parent._detach(self)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            children = list(self._children)
        self._event.set()
        for child in children:
            child.cancel()

    def cancelled(self) -> bool:
        return self._cancelled

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        return self._cancelled or self.expired()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def error(self) -> Exception | None:
        """Why the context ended, or None while it is still live."""
        if self._cancelled:
            return RequestCancelled("request cancelled")
        if self.expired():
            return DeadlineExceeded("deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return False if the context ended first."""
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return False
        self._event.wait(max(0.0, seconds))
        return not self.done()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; True when done."""
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.done()


def background() -> ExecutionContext:
    """A fresh root context with no deadline."""
    return ExecutionContext()
