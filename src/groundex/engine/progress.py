"""Periodic progress reporting for a running request."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from ..shared.context import ExecutionContext
from .types import ExtractionProgress, ProgressCallback

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Daemon thread that snapshots pipeline state on a fixed interval.

    Stops when ``stop()`` is called, when ``ctx`` ends, or when
    ``is_active()`` reports the request has left the registry. It only
    reads state through ``snapshot``. Callback exceptions are logged and
    do not stop the ticker.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        callback: ProgressCallback,
        snapshot: Callable[[], ExtractionProgress],
        is_active: Callable[[], bool],
        interval: float = 1.0,
    ):
        self.ctx = ctx
        self.callback = callback
        self.snapshot = snapshot
        self.is_active = is_active
        self.interval = interval
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> ProgressReporter:
        self._thread = threading.Thread(target=self._run, name="groundex-progress", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self) -> None:
        next_tick = time.monotonic() + self.interval
        while not self._stop.is_set():
            if self._stop.wait(max(0.0, next_tick - time.monotonic())):
                break
            next_tick += self.interval
            if self.ctx.done() or not self.is_active():
                break
            self.ticks += 1
            try:
                self.callback(self.snapshot())
            except Exception:
                logger.exception("[progress] callback raised")
