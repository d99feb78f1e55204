"""End-to-end tests for the extraction engine with scripted providers."""
import threading
import time

import pytest

from groundex.document import Document
from groundex.engine.config import EngineConfig, OverlapStrategy
from groundex.engine.types import ExtractionRequest, SealedResponseError, StepStatus
from groundex.errors import (
    AuthenticationError,
    ProvidersExhaustedError,
    ProviderUnavailableError,
    RequestCancelled,
    RequestValidationError,
    ResponseParseError,
    StageError,
)
from groundex.schema import BasicExtractionSchema, ClassDefinition
from groundex.types import AlignmentStatus, CharInterval


@pytest.fixture
def google_answer(make_answer):
    return make_answer(
        ("person", "John Smith", 0.9),
        ("org", "Google Inc.", 0.95),
        ("location", "Mountain View", 0.8),
    )


def _request(text, **kwargs):
    return ExtractionRequest(task_description="Extract people, organisations and places.", text=text, **kwargs)


class TestHappyPath:
    def test_grounded_extractions(self, scripted, make_engine, sample_text, google_answer):
        engine = make_engine(scripted("A", [google_answer]))
        response = engine.process(_request(sample_text))

        assert response.is_successful, response.error
        assert response.provider_used == "A"
        assert response.model_used == "A-model"
        assert response.passes_completed == 1
        assert response.tokens_used == 10
        spans = {e.extraction_text: e.char_interval for e in response.extractions}
        assert spans == {
            "John Smith": CharInterval(0, 10),
            "Google Inc.": CharInterval(20, 31),
            "Mountain View": CharInterval(35, 48),
        }
        assert all(e.alignment_status is AlignmentStatus.EXACT for e in response.extractions)
        assert response.extraction_count == 3
        assert response.text_coverage == pytest.approx(34 / 49)
        assert response.confidence_score == pytest.approx((0.9 + 0.95 + 0.8) / 3)

    def test_grounded_text_matches_source(self, scripted, make_engine, sample_text, make_answer):
        engine = make_engine(scripted("A", [make_answer(("person", "john  smith"), ("org", "google inc"))]))
        response = engine.process(_request(sample_text))
        for e in response.extractions:
            assert e.is_grounded()
            assert e.char_interval.end <= len(sample_text)
        by_text = {e.extraction_text: e for e in response.extractions}
        john = by_text["john  smith"]
        assert sample_text[john.char_interval.start:john.char_interval.end] == "John Smith"
        assert john.token_interval.start == 0
        assert john.token_interval.end == 2

    def test_step_trace(self, scripted, make_engine, sample_text, google_answer):
        response = make_engine(scripted("A", [google_answer])).process(_request(sample_text))
        names = [s.name for s in response.debug.steps]
        assert names == [
            "initialization",
            "preprocessing",
            "extraction.pass_1",
            "extraction",
            "aggregation",
            "validation",
            "finalization",
        ]
        assert response.debug.steps[5].status is StepStatus.SKIPPED
        assert response.annotated_document.document_id.startswith("doc_")

    def test_unanchored_extraction_kept(self, scripted, make_engine, sample_text, make_answer):
        engine = make_engine(scripted("A", [make_answer(("person", "Ada Lovelace"))]))
        response = engine.process(_request(sample_text))
        assert response.extraction_count == 1
        ext = response.extractions[0]
        assert ext.char_interval is None
        assert ext.alignment_status is AlignmentStatus.NONE
        assert response.text_coverage == 0.0

    def test_document_input(self, scripted, make_engine, google_answer, sample_text):
        engine = make_engine(scripted("A", [google_answer]))
        response = engine.process(ExtractionRequest(task_description="Extract.", document=Document(sample_text)))
        assert response.extraction_count == 3

    def test_debug_mode_records_prompts(self, scripted, make_engine, sample_text, google_answer):
        engine = make_engine(scripted("A", [google_answer]), config=EngineConfig(enable_debug_mode=True))
        response = engine.process(_request(sample_text))
        assert len(response.debug.prompts) == 1
        assert sample_text in response.debug.prompts[0]
        assert response.debug.raw_responses == (google_answer,)


class TestAggregation:
    def test_duplicates_keep_highest_confidence(self, scripted, make_engine, sample_text, make_answer):
        answer = make_answer(("person", "John Smith", 0.6), ("person", "John Smith", 0.9))
        response = make_engine(scripted("A", [answer])).process(_request(sample_text))
        assert response.extraction_count == 1
        assert response.extractions[0].confidence == 0.9

    def test_low_confidence_filtered(self, scripted, make_engine, sample_text, make_answer):
        answer = make_answer(("org", "Google Inc.", 0.2), ("person", "John Smith"))
        response = make_engine(scripted("A", [answer])).process(_request(sample_text))
        assert [e.extraction_text for e in response.extractions] == ["John Smith"]
        aggregation = next(s for s in response.debug.steps if s.name == "aggregation")
        assert aggregation.metadata["low_confidence_filtered"] == 1

    def test_no_overlapping_outputs(self, scripted, make_engine, sample_text, make_answer):
        answer = make_answer(("org", "Google Inc.", 0.9), ("org", "Google", 0.6))
        response = make_engine(scripted("A", [answer])).process(_request(sample_text))
        assert [e.extraction_text for e in response.extractions] == ["Google Inc."]

    def test_merge_strategy(self, scripted, make_engine, sample_text, make_answer):
        answer = make_answer(("org", "Google", 0.6), ("org", "Google Inc.", 0.9))
        config = EngineConfig(overlap_strategy=OverlapStrategy.MERGE_OVERLAPPING, progress_interval=0.05)
        response = make_engine(scripted("A", [answer]), config=config).process(_request(sample_text))
        assert response.extraction_count == 1
        assert response.extractions[0].char_interval == CharInterval(20, 31)


class TestFailover:
    def test_failover_to_second_provider(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [ProviderUnavailableError("down")])
        b = scripted("B", [google_answer])
        response = make_engine(a, b).process(_request(sample_text))
        assert response.is_successful
        assert response.provider_used == "B"
        assert len(response.debug.failover_events) == 1
        event = response.debug.failover_events[0]
        assert (event.original_provider, event.fallback_provider, event.success) == ("A", "B", True)
        assert response.debug.retry_attempts == 1

    def test_all_providers_fail(self, scripted, make_engine, sample_text):
        a = scripted("A", [ProviderUnavailableError("down")])
        b = scripted("B", [ProviderUnavailableError("down")])
        response = make_engine(a, b).process(_request(sample_text))
        assert not response.is_successful
        assert isinstance(response.error, StageError)
        assert isinstance(response.error.cause, ProvidersExhaustedError)
        assert response.error_code == "extraction:providers_exhausted"
        assert response.current_stage == "extraction"
        assert response.extractions == ()
        assert len(response.debug.failover_events) == 1
        assert response.debug.failover_events[0].success is False

    def test_non_recoverable_error_does_not_fail_over(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [AuthenticationError("bad key")])
        b = scripted("B", [google_answer])
        response = make_engine(a, b).process(_request(sample_text))
        assert response.error_code == "extraction:authentication"
        assert b.calls == []


class TestMultiPass:
    def test_failed_later_pass_keeps_earlier_results(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [google_answer, AuthenticationError("revoked")])
        response = make_engine(a).process(_request(sample_text, extraction_passes=3))

        assert response.is_successful
        assert response.passes_completed == 1
        assert response.extraction_count == 3
        steps = {s.name: s for s in response.debug.steps}
        assert steps["extraction.pass_2"].status is StepStatus.ERROR
        assert "extraction.pass_3" not in steps
        assert steps["extraction"].status is StepStatus.WARNING

    def test_followup_prompt_lists_previous(self, scripted, make_engine, sample_text, google_answer, make_answer):
        a = scripted("A", [google_answer, make_answer(("person", "Smith", 0.3))])
        make_engine(a).process(_request(sample_text, extraction_passes=2))
        assert len(a.calls) == 2
        assert "already found" not in a.calls[0]
        assert "- person: John Smith" in a.calls[1]

    def test_early_stop_without_new_extractions(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [google_answer])
        config = EngineConfig(enable_multi_pass=True, progress_interval=0.05)
        response = make_engine(a, config=config).process(_request(sample_text, extraction_passes=3))
        assert len(a.calls) == 2
        assert response.passes_completed == 2
        extraction = next(s for s in response.debug.steps if s.name == "extraction")
        assert extraction.metadata["stopped_early"] is True
        assert response.extraction_count == 3

    def test_explicit_passes_without_multi_pass_run_all(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [google_answer])
        response = make_engine(a).process(_request(sample_text, extraction_passes=3))
        assert len(a.calls) == 3
        assert response.passes_completed == 3
        assert response.tokens_used == 30

    def test_pass_count_heuristic(self, scripted, make_engine, make_answer):
        text = "Ada Lovelace wrote notes. " * 300
        a = scripted("A", [make_answer(("person", "Ada Lovelace"))])
        config = EngineConfig(enable_multi_pass=True, max_passes=3, pass_improvement_threshold=0.0)
        response = make_engine(a, config=config).process(_request(text))
        assert len(text.strip()) >= 5000
        assert response.passes_completed == 2


class TestChunking:
    TEXT = "Alice Brown joined Acme Labs. Bob Stone runs Beta Works."

    def test_each_chunk_is_prompted_and_mapped_back(self, scripted, make_engine, make_answer):
        """Chunk-relative answers are grounded at their offsets in the whole document."""
        engine = None
        seen = []

        def by_chunk(ctx, prompt):
            seen.extend(engine.get_active_requests().values())
            if "Alice" in prompt:
                return make_answer(("person", "Alice Brown"), ("org", "Acme Labs"))
            return make_answer(("person", "Bob Stone"), ("org", "Beta Works"))

        a = scripted("A", [by_chunk])
        engine = make_engine(a, config=EngineConfig(max_char_buffer=30, progress_interval=0.05))
        response = engine.process(_request(self.TEXT))

        assert response.is_successful, response.error
        assert len(a.calls) == 2
        assert "Bob Stone" not in a.calls[0]
        assert "Alice Brown" not in a.calls[1]
        spans = {e.extraction_text: e.char_interval for e in response.extractions}
        assert spans == {
            "Alice Brown": CharInterval(0, 11),
            "Acme Labs": CharInterval(19, 28),
            "Bob Stone": CharInterval(30, 39),
            "Beta Works": CharInterval(45, 55),
        }
        for e in response.extractions:
            assert self.TEXT[e.char_interval.start:e.char_interval.end] == e.extraction_text
        assert [(p.current_chunk, p.chunks_processed, p.total_chunks) for p in seen] == [(1, 0, 2), (2, 1, 2)]
        assert response.debug.steps[1].metadata["chunks"] == 2

    def test_short_document_is_one_chunk(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [google_answer])
        response = make_engine(a, config=EngineConfig(max_char_buffer=1000)).process(_request(sample_text))
        assert len(a.calls) == 1
        assert response.extraction_count == 3


class TestErrors:
    def test_empty_task_is_not_wrapped(self, scripted, make_engine):
        response = make_engine(scripted("A", ["{}"])).process(
            ExtractionRequest(task_description="  ", text="some text")
        )
        assert isinstance(response.error, RequestValidationError)
        assert response.error_code == "invalid_request"
        assert response.current_stage == "initialization"

    def test_blank_text_fails_preprocessing(self, scripted, make_engine):
        response = make_engine(scripted("A", ["{}"])).process(_request("   \n "))
        assert isinstance(response.error, RequestValidationError)
        assert response.current_stage == "preprocessing"

    def test_missing_input(self, scripted, make_engine):
        response = make_engine(scripted("A", ["{}"])).process(ExtractionRequest(task_description="Extract."))
        assert isinstance(response.error, RequestValidationError)

    def test_unparseable_answer(self, scripted, make_engine, sample_text):
        response = make_engine(scripted("A", ["I could not find anything."])).process(_request(sample_text))
        assert isinstance(response.error, StageError)
        assert isinstance(response.error.cause, ResponseParseError)
        assert response.error_code == "extraction:parse_error"
        with pytest.raises(StageError):
            response.raise_for_error()

    def test_negative_retry_count_uses_default(self, scripted, make_engine, sample_text, google_answer):
        a = scripted("A", [ProviderUnavailableError("blip"), google_answer])
        response = make_engine(a).process(_request(sample_text, retry_count=-1))
        assert response.is_successful
        assert len(a.calls) == 2


class TestValidation:
    def test_invalid_extractions_dropped(self, scripted, make_engine, sample_text, make_answer):
        schema = BasicExtractionSchema(
            name="people", classes=[ClassDefinition(name="person"), ClassDefinition(name="org")]
        )
        answer = make_answer(("person", "John Smith"), ("planet", "Mountain View"))
        response = make_engine(scripted("A", [answer])).process(_request(sample_text, schema=schema))

        assert response.is_successful
        assert [e.extraction_class for e in response.extractions] == ["person"]
        assert len(response.validation_errors) == 1
        assert response.validation_errors[0].field == "extraction_class"
        validation = next(s for s in response.debug.steps if s.name == "validation")
        assert validation.status is StepStatus.WARNING

    def test_validation_can_be_disabled(self, scripted, make_engine, sample_text, make_answer):
        schema = BasicExtractionSchema(name="people", classes=[ClassDefinition(name="person")])
        answer = make_answer(("planet", "Mountain View"))
        response = make_engine(scripted("A", [answer])).process(
            _request(sample_text, schema=schema, validate_output=False)
        )
        assert response.extraction_count == 1
        assert response.validation_errors == ()


class TestLifecycle:
    def test_response_is_sealed(self, scripted, make_engine, sample_text, google_answer):
        response = make_engine(scripted("A", [google_answer])).process(_request(sample_text))
        assert response.sealed
        assert isinstance(response.extractions, tuple)
        with pytest.raises(SealedResponseError):
            response.provider_used = "other"
        with pytest.raises(SealedResponseError):
            response.debug.retry_attempts = 5
        assert isinstance(response.debug.steps, tuple)
        data = response.to_dict()
        assert data["success"] is True
        assert data["extraction_count"] == 3

    def test_active_registry(self, scripted, make_engine, sample_text, google_answer):
        seen = {}
        request = _request(sample_text)

        def inspect(ctx, prompt):
            seen.update(engine.get_active_requests())
            return google_answer

        engine = make_engine(scripted("A", [inspect]))
        engine.process(request)
        assert seen[request.id].stage == "extraction"
        assert seen[request.id].current_pass == 1
        assert not engine.is_active(request.id)
        assert engine.get_active_requests() == {}
        assert engine.cancel(request.id) is False

    def test_cancel_keeps_partial_results(self, scripted, make_engine, sample_text, google_answer):
        request = _request(sample_text, extraction_passes=3)

        def cancel_then_fail(ctx, prompt):
            assert engine.cancel(request.id) is True
            ctx.raise_if_done()
            return google_answer

        engine = make_engine(scripted("A", [google_answer, cancel_then_fail]))
        response = engine.process(request)

        assert isinstance(response.error, StageError)
        assert isinstance(response.error.cause, RequestCancelled)
        assert response.error_code == "extraction:cancelled"
        assert response.passes_completed == 1
        assert response.extraction_count == 3

    def test_cancelled_before_start(self, scripted, make_engine, sample_text):
        a = scripted("A", ["{}"])
        request = _request(sample_text)
        request.context.cancel()
        response = make_engine(a).process(request)
        assert isinstance(response.error, RequestCancelled)
        assert response.error_code == "cancelled"
        assert a.calls == []

    def test_progress_callback(self, scripted, make_engine, sample_text, google_answer):
        updates = []

        def slow(ctx, prompt):
            time.sleep(0.15)
            return google_answer

        engine = make_engine(scripted("A", [slow]))
        request = _request(sample_text, progress_callback=updates.append)
        engine.process(request)

        stages = [u.stage for u in updates]
        assert stages[0] == "initialization"
        for stage in ("preprocessing", "extraction", "aggregation", "validation", "finalization"):
            assert stage in stages
        assert all(u.request_id == request.id for u in updates)
        assert all(0.0 <= u.progress <= 1.0 for u in updates)

    def test_progress_callback_errors_are_ignored(self, scripted, make_engine, sample_text, google_answer):
        def broken(progress):
            raise RuntimeError("ui went away")

        response = make_engine(scripted("A", [google_answer])).process(
            _request(sample_text, progress_callback=broken)
        )
        assert response.is_successful

    def test_concurrency_limit(self, scripted, make_engine, sample_text, google_answer):
        started = threading.Event()
        release = threading.Event()

        def blocking(ctx, prompt):
            started.set()
            release.wait(5)
            return google_answer

        engine = make_engine(
            scripted("A", [blocking]), config=EngineConfig(max_concurrent_requests=1, progress_interval=0.05)
        )
        first, second = _request(sample_text), _request(sample_text)
        responses = {}
        t1 = threading.Thread(target=lambda: responses.setdefault("first", engine.process(first)))
        t1.start()
        assert started.wait(5)
        t2 = threading.Thread(target=lambda: responses.setdefault("second", engine.process(second)))
        t2.start()
        time.sleep(0.2)
        assert engine.is_active(first.id)
        assert not engine.is_active(second.id)

        release.set()
        t1.join(5)
        t2.join(5)
        assert responses["first"].is_successful
        assert responses["second"].is_successful

    def test_health_and_cache_passthrough(self, scripted, make_engine, sample_text, google_answer):
        engine = make_engine(scripted("A", [google_answer]))
        engine.process(_request(sample_text))
        assert engine.provider_health()["A"].successful_requests == 1
        assert engine.cache_stats() == {}
