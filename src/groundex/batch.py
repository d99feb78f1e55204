"""Bounded concurrent batch extraction."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from .engine.pipeline import ExtractionEngine
from .engine.types import ExtractionRequest, ExtractionResponse
from .shared.logger import PipelineLogger


@dataclass
class BatchResult:
    name: str
    response: ExtractionResponse | None = None
    error: Exception | None = None
    duration: float = 0.0
    skipped: bool = False

    @property
    def success(self) -> bool:
        return not self.skipped and self.error is None and self.response is not None and self.response.is_successful

    @property
    def extraction_count(self) -> int:
        return self.response.extraction_count if self.response is not None else 0


@dataclass
class BatchSummary:
    results: list[BatchResult] = field(default_factory=list)
    aborted: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)


def run_batch(
    engine: ExtractionEngine,
    items: list[tuple[str, ExtractionRequest]],
    concurrency: int = 4,
    max_errors: int | None = 10,
    log: PipelineLogger | None = None,
) -> BatchSummary:
    """Process named requests with at most ``concurrency`` in flight.

    Once more than ``max_errors`` items have failed, nothing further is
    submitted; items already running finish and the rest are reported as
    skipped. ``max_errors=None`` never aborts. Results come back in input
    order.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    slots = threading.BoundedSemaphore(concurrency)
    lock = threading.Lock()
    errors = 0
    done = 0
    results: dict[int, BatchResult] = {}
    abort = threading.Event()

    def _process_one(name: str, request: ExtractionRequest) -> BatchResult:
        nonlocal errors, done
        start = time.perf_counter()
        try:
            try:
                response = engine.process(request)
                result = BatchResult(name=name, response=response, error=response.error)
            except Exception as exc:
                result = BatchResult(name=name, error=exc)
            result.duration = time.perf_counter() - start

            with lock:
                done += 1
                if not result.success:
                    errors += 1
                    if max_errors is not None and errors > max_errors:
                        abort.set()
                n_done = done
        finally:
            slots.release()
        if log is not None:
            log.progress(n_done, len(items), name)
            if result.response is not None:
                log.response(name, result.response)
            elif result.error is not None:
                log.error(f"{name}: {result.error}")
            log.metric("item_time_s", round(result.duration, 3), "s")
        return result

    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = {}
        for index, (name, request) in enumerate(items):
            slots.acquire()
            if abort.is_set():
                slots.release()
                break
            futures[executor.submit(_process_one, name, request)] = index
        for future in as_completed(futures):
            results[futures[future]] = future.result()

    summary = BatchSummary(aborted=abort.is_set())
    for index, (name, _) in enumerate(items):
        summary.results.append(results.get(index) or BatchResult(name=name, skipped=True))
    if log is not None:
        log.metric("batch_succeeded", summary.succeeded)
        log.metric("batch_failed", summary.failed)
        if summary.aborted:
            log.warn(f"Batch aborted after {errors} errors; {summary.skipped} items skipped")
    return summary
