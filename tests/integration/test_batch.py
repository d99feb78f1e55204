"""Tests for bounded concurrent batch runs."""
import threading
import time

import pytest

from groundex.batch import run_batch
from groundex.engine.types import ExtractionRequest
from groundex.errors import AuthenticationError
from groundex.shared.logger import PipelineLogger


def _items(n, text="John Smith works at Google Inc."):
    return [(f"doc-{i}", ExtractionRequest(task_description="Extract people.", text=text)) for i in range(n)]


class TestRunBatch:
    def test_all_succeed_in_input_order(self, scripted, make_engine, make_answer):
        engine = make_engine(scripted("A", [make_answer(("person", "John Smith"))]))
        summary = run_batch(engine, _items(5), concurrency=3)
        assert [r.name for r in summary.results] == [f"doc-{i}" for i in range(5)]
        assert summary.succeeded == 5
        assert summary.failed == 0
        assert not summary.aborted
        assert all(r.extraction_count == 1 for r in summary.results)

    def test_concurrency_bound(self, scripted, make_engine, make_answer):
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def tracked(ctx, prompt):
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.05)
            with lock:
                in_flight -= 1
            return make_answer(("person", "John Smith"))

        engine = make_engine(scripted("A", [tracked]))
        summary = run_batch(engine, _items(8), concurrency=2)
        assert summary.succeeded == 8
        assert peak <= 2

    def test_aborts_after_max_errors(self, scripted, make_engine):
        engine = make_engine(scripted("A", [AuthenticationError("bad key")]))
        summary = run_batch(engine, _items(10), concurrency=1, max_errors=2)
        assert summary.aborted
        assert summary.failed == 3
        assert summary.skipped == 7
        assert summary.results[-1].skipped

    def test_no_limit_never_aborts(self, scripted, make_engine):
        engine = make_engine(scripted("A", [AuthenticationError("bad key")]))
        summary = run_batch(engine, _items(4), concurrency=2, max_errors=None)
        assert not summary.aborted
        assert summary.failed == 4

    def test_rejects_bad_concurrency(self, scripted, make_engine):
        with pytest.raises(ValueError):
            run_batch(make_engine(scripted("A", ["{}"])), _items(1), concurrency=0)

    def test_logs_progress(self, scripted, make_engine, make_answer, tmp_path):
        engine = make_engine(scripted("A", [make_answer(("person", "John Smith"))]))
        with PipelineLogger(log_file=tmp_path / "batch.log", console=False) as log:
            run_batch(engine, _items(3), concurrency=2, log=log)
            assert len(log.metrics("item_time_s")) == 3
        content = (tmp_path / "batch.log").read_text()
        assert "doc-0" in content
        assert "batch_succeeded" in content
