"""Run log for batch and CLI runs.

Every line goes to up to three sinks, each gated by its own level:

- console   : ``min_level`` and up
- info_file : INFO and up
- trace_file: everything, including per-stage response traces

Library modules log through stdlib ``logging``; ``install_stdlib_bridge``
forwards their records here so one run ends up in one place.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from ..engine.types import ExtractionResponse

TRACE = 5
LEVELS: dict[str, int] = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "PROG": logging.INFO,
    "METRIC": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


class _Sink:
    """One output stream with a level gate. ``stream=None`` means stdout."""

    def __init__(self, stream: TextIO | None, min_level: int, owned: bool = False):
        self.stream = stream
        self.min_level = min_level
        self.owned = owned

    @classmethod
    def open(cls, path: Path, min_level: int, title: str) -> _Sink:
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(path, "w", encoding="utf-8", buffering=1)
        rule = "=" * 80
        fh.write(f"{rule}\n{title}: {time.strftime('%Y-%m-%d %H:%M:%S')}\n{rule}\n\n")
        return cls(fh, min_level, owned=True)

    def write(self, level: int, line: str) -> None:
        if level < self.min_level:
            return
        stream = self.stream or sys.stdout
        stream.write(line + "\n")
        if self.stream is None:
            stream.flush()

    def close(self) -> None:
        if self.owned and self.stream is not None and not self.stream.closed:
            self.stream.close()


class PipelineLogger:
    def __init__(
        self,
        log_file: str | Path | None = None,
        trace_file: str | Path | None = None,
        console: bool = True,
        min_level: str = "INFO",
    ) -> None:
        self.log_path = Path(log_file) if log_file else None
        self.trace_path = Path(trace_file) if trace_file else None
        self._sinks: list[_Sink] = []
        if console:
            self._sinks.append(_Sink(None, LEVELS.get(min_level.upper(), logging.INFO)))
        if self.log_path:
            self._sinks.append(_Sink.open(self.log_path, logging.INFO, "groundex run log"))
        if self.trace_path:
            self._sinks.append(_Sink.open(self.trace_path, TRACE, "groundex trace log"))

        self._lock = threading.Lock()
        self._start = time.perf_counter()
        self._timers: dict[str, float] = {}
        self._metrics: defaultdict[str, list[Any]] = defaultdict(list)

    def _emit(self, tag: str, msg: str, plain: bool = False) -> None:
        level = LEVELS.get(tag, logging.INFO)
        if plain:
            line = msg
        else:
            elapsed = time.perf_counter() - self._start
            line = f"[{time.strftime('%H:%M:%S')}] [{elapsed:7.2f}s] {tag:6} | {msg}"
        with self._lock:
            for sink in self._sinks:
                sink.write(level, line)

    def trace(self, msg: str) -> None:
        self._emit("TRACE", msg)

    def debug(self, msg: str) -> None:
        self._emit("DEBUG", msg)

    def info(self, msg: str) -> None:
        self._emit("INFO", msg)

    def warn(self, msg: str) -> None:
        self._emit("WARN", msg)

    def error(self, msg: str) -> None:
        self._emit("ERROR", msg)

    def section(self, title: str) -> None:
        rule = "=" * 80
        for line in ("", rule, f"  {title}", rule):
            self._emit("INFO", line, plain=True)

    def progress(self, current: int, total: int, label: str = "") -> None:
        fraction = current / total if total else 0.0
        filled = int(20 * fraction)
        msg = f"[{current:>4}/{total}] {'█' * filled}{'░' * (20 - filled)} {fraction * 100:5.1f}%"
        self._emit("PROG", f"{msg}  {label}" if label else msg)

    def metric(self, name: str, value: Any, unit: str = "") -> None:
        with self._lock:
            self._metrics[name].append(value)
        shown = f"{value:.3f}" if isinstance(value, float) else str(value)
        self._emit("METRIC", f"{name} = {shown}{' ' + unit if unit else ''}")

    def metrics(self, name: str) -> list[Any]:
        with self._lock:
            return list(self._metrics.get(name, []))

    def response(self, label: str, response: ExtractionResponse) -> None:
        """Outcome of one extraction at INFO (or ERROR), its step trace at TRACE."""
        if response.is_successful:
            self.info(
                f"{label}: {response.extraction_count} extractions | "
                f"provider={response.provider_used} | passes={response.passes_completed} | "
                f"coverage={response.text_coverage:.1%} | {response.execution_time:.2f}s"
            )
        else:
            self.error(f"{label}: [{response.error_code}] {response.error}")
        for step in response.debug.steps:
            self.trace(f"{label} | {step.name} {step.status.value} {step.duration:.3f}s {step.message}".rstrip())
        for event in response.debug.failover_events:
            self.trace(
                f"{label} | failover {event.original_provider} -> {event.fallback_provider} "
                f"success={event.success} reason={event.reason}"
            )

    def timer_start(self, name: str) -> None:
        self._timers[name] = time.perf_counter()

    def timer_end(self, name: str) -> float:
        started = self._timers.pop(name, None)
        if started is None:
            self.warn(f"timer {name!r} was never started")
            return 0.0
        return time.perf_counter() - started

    @contextmanager
    def timer(self, name: str):
        self.timer_start(name)
        try:
            yield
        finally:
            self._emit("METRIC", f"timer:{name} = {self.timer_end(name):.3f}s")

    def summary(self) -> None:
        self.section("RUN SUMMARY")
        self.info(f"wall time: {time.perf_counter() - self._start:.2f}s")
        with self._lock:
            snapshot = {name: list(values) for name, values in self._metrics.items()}
        for name, values in snapshot.items():
            numeric = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
            if numeric:
                self.info(f"  {name:<40} n={len(numeric):<5} sum={sum(numeric):.3f}")
        for label, path in (("info log", self.log_path), ("trace log", self.trace_path)):
            if path:
                self.info(f"{label}: {path}")

    def install_stdlib_bridge(self, root_logger: str = "groundex", level: int = logging.INFO) -> None:
        root = logging.getLogger(root_logger)
        if any(isinstance(h, _BridgeHandler) and h.target is self for h in root.handlers):
            return
        handler = _BridgeHandler(self)
        handler.setLevel(level)
        root.addHandler(handler)
        if root.level == logging.NOTSET or root.level > level:
            root.setLevel(level)

    def remove_stdlib_bridge(self, root_logger: str = "groundex") -> None:
        root = logging.getLogger(root_logger)
        for h in [h for h in root.handlers if isinstance(h, _BridgeHandler) and h.target is self]:
            root.removeHandler(h)

    def close(self) -> None:
        with self._lock:
            for sink in self._sinks:
                sink.close()
            self._sinks = [s for s in self._sinks if not s.owned]

    def __enter__(self) -> PipelineLogger:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class _BridgeHandler(logging.Handler):
    """Forwards stdlib log records to a PipelineLogger."""

    def __init__(self, target: PipelineLogger) -> None:
        super().__init__()
        self.target = target

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno >= logging.ERROR:
                tag = "ERROR"
            elif record.levelno >= logging.WARNING:
                tag = "WARN"
            elif record.levelno >= logging.INFO:
                tag = "INFO"
            else:
                tag = "DEBUG"
            self.target._emit(tag, f"[{record.name}] {self.format(record)}")
        except Exception:
            self.handleError(record)
