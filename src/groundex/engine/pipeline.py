"""Extraction engine: staged pipeline from request to grounded extractions.

Stages, in order:
    initialization -> preprocessing -> extraction -> aggregation
    -> validation -> finalization

Each stage appends a ProcessingStep to the response trace. ``process``
never raises for pipeline failures; the error is stored on the response
together with whatever was accumulated before it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace

from ..alignment.aligner import TextAligner
from ..chunking import TextChunk, chunk_text
from ..document import AnnotatedDocument, Document
from ..errors import ContextError, RequestValidationError, SchemaValidationError, StageError
from ..shared.context import ExecutionContext
from ..shared.rwlock import ReadWriteLock
from ..types import Extraction
from .aggregation import deduplicate, filter_by_confidence, resolve_overlaps
from .config import EngineConfig
from .gateway import ProviderGateway, ProviderHealth
from .parsing import parse_extractions
from .progress import ProgressReporter
from .prompts import build_prompt
from .types import (
    DEFAULT_RETRY_COUNT,
    ExtractionProgress,
    ExtractionRequest,
    ExtractionResponse,
    ProcessingStep,
    Stage,
    StepStatus,
    ValidationIssue,
)

logger = logging.getLogger(__name__)

STAGES = list(Stage)
_EARLY_STAGES = (Stage.INITIALIZATION, Stage.PREPROCESSING)


@dataclass
class _RequestState:
    """Mutable per-request state; the progress ticker only reads it."""

    request: ExtractionRequest
    started: float = field(default_factory=time.monotonic)
    stage: Stage = Stage.INITIALIZATION
    current_pass: int = 0
    total_passes: int = 0
    current_chunk: int = 0
    chunks_processed: int = 0
    message: str = ""
    document: Document | None = None
    chunks: list[TextChunk] = field(default_factory=list)
    extractions: list[Extraction] = field(default_factory=list)

    def snapshot(self) -> ExtractionProgress:
        idx = STAGES.index(self.stage)
        progress = idx / len(STAGES)
        if self.stage is Stage.EXTRACTION and self.total_passes:
            done = max(0, self.current_pass - 1)
            if self.chunks:
                done += self.chunks_processed / len(self.chunks)
            progress += min(1.0, done / self.total_passes) / len(STAGES)
        return ExtractionProgress(
            request_id=self.request.id,
            stage=self.stage.value,
            progress=min(1.0, progress),
            message=self.message,
            elapsed=time.monotonic() - self.started,
            current_pass=self.current_pass,
            total_passes=self.total_passes,
            current_chunk=self.current_chunk,
            chunks_processed=self.chunks_processed,
            total_chunks=len(self.chunks),
        )


class ExtractionEngine:
    """Orchestrates prompt building, provider calls, alignment and aggregation.

    Args:
        gateway: Provider gateway used for every model call.
        config: Engine configuration (defaults to ``EngineConfig()``).
        aligner: Text aligner (defaults to one built from ``config.alignment``).
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        config: EngineConfig | None = None,
        aligner: TextAligner | None = None,
    ):
        self.gateway = gateway
        self.config = config or EngineConfig()
        self.aligner = aligner or TextAligner(self.config.alignment)
        self._active: dict[str, _RequestState] = {}
        self._active_lock = ReadWriteLock()
        self._slots = threading.BoundedSemaphore(self.config.max_concurrent_requests)

    # -- registry -----------------------------------------------------------

    def get_active_requests(self) -> dict[str, ExtractionProgress]:
        """Snapshot of in-flight requests and their progress."""
        with self._active_lock.read():
            states = list(self._active.values())
        return {s.request.id: s.snapshot() for s in states}

    def is_active(self, request_id: str) -> bool:
        with self._active_lock.read():
            return request_id in self._active

    def cancel(self, request_id: str) -> bool:
        with self._active_lock.read():
            state = self._active.get(request_id)
        if state is None:
            return False
        state.request.context.cancel()
        return True

    def provider_health(self) -> dict[str, ProviderHealth]:
        return self.gateway.provider_health()

    def cache_stats(self) -> dict[str, float]:
        return self.gateway.cache_stats()

    def _acquire_slot(self, ctx: ExecutionContext) -> bool:
        while not self._slots.acquire(timeout=0.05):
            if ctx.done():
                return False
        return True

    # -- entry point --------------------------------------------------------

    def process(self, request: ExtractionRequest) -> ExtractionResponse:
        """Run the full pipeline for one request."""
        start = time.perf_counter()
        response = ExtractionResponse(request_id=request.id)
        ctx = request.context

        if not self._acquire_slot(ctx):
            response.fail(ctx.error())
            response.execution_time = time.perf_counter() - start
            response.seal()
            return response

        state = _RequestState(request=request)
        with self._active_lock.write():
            self._active[request.id] = state

        reporter = None
        if request.progress_callback is not None and self.config.enable_progress_tracking:
            reporter = ProgressReporter(
                ctx,
                request.progress_callback,
                state.snapshot,
                lambda: self.is_active(request.id),
                self.config.progress_interval,
            ).start()

        logger.info("[engine] %s started", request.id)
        try:
            self._run(request, state, response)
        finally:
            if reporter is not None:
                reporter.stop()
            with self._active_lock.write():
                self._active.pop(request.id, None)
            self._slots.release()
            response.execution_time = time.perf_counter() - start
            response.seal()

        if response.is_successful:
            logger.info(
                "[engine] %s done | extractions=%d | passes=%d | provider=%s | %.2fs",
                request.id,
                response.extraction_count,
                response.passes_completed,
                response.provider_used,
                response.execution_time,
            )
        else:
            logger.warning("[engine] %s failed at %s | %s", request.id, response.current_stage, response.error)
        return response

    def _run(self, request: ExtractionRequest, state: _RequestState, response: ExtractionResponse) -> None:
        handlers = {
            Stage.INITIALIZATION: self._initialize,
            Stage.PREPROCESSING: self._preprocess,
            Stage.EXTRACTION: self._extract,
            Stage.AGGREGATION: self._aggregate,
            Stage.VALIDATION: self._validate,
            Stage.FINALIZATION: self._finalize,
        }
        for stage in STAGES:
            state.stage = stage
            state.message = f"{stage.value} started"
            response.current_stage = stage.value
            self._notify(state)
            step = ProcessingStep(name=stage.value, started_at=time.time())
            t0 = time.perf_counter()
            try:
                state.request.context.raise_if_done()
                handlers[stage](state, response, step)
            except Exception as exc:
                step.status = StepStatus.ERROR
                step.message = str(exc)
                step.duration = time.perf_counter() - t0
                response.add_step(step)
                if stage in _EARLY_STAGES:
                    response.fail(exc)
                else:
                    response.fail(StageError(stage.value, exc))
                    self._summarize(state, response)
                logger.debug("[engine] %s stage %s failed", request.id, stage.value, exc_info=True)
                return
            step.duration = time.perf_counter() - t0
            response.add_step(step)
            logger.debug(
                "[engine] %s stage=%s status=%s %.3fs %s",
                request.id, stage.value, step.status.value, step.duration, step.message,
            )

    def _notify(self, state: _RequestState) -> None:
        callback = state.request.progress_callback
        if callback is None or not self.config.enable_progress_tracking:
            return
        try:
            callback(state.snapshot())
        except Exception:
            logger.exception("[engine] progress callback raised")

    # -- stages -------------------------------------------------------------

    def _initialize(self, state: _RequestState, response: ExtractionResponse, step: ProcessingStep) -> None:
        req = state.request
        if req.document is None and req.text is None:
            raise RequestValidationError("request has neither a document nor text")
        if not req.task_description or not req.task_description.strip():
            raise RequestValidationError("task description is empty")
        if req.timeout is not None and req.timeout <= 0:
            raise RequestValidationError(f"timeout must be > 0, got {req.timeout}")

        retry_count = req.retry_count if req.retry_count is not None and req.retry_count >= 0 else DEFAULT_RETRY_COUNT
        passes = req.extraction_passes
        if passes is not None and passes < 1:
            passes = 1
        state.request = replace(req, retry_count=retry_count, extraction_passes=passes)
        step.metadata = {"retry_count": retry_count, "extraction_passes": passes}

    def _preprocess(self, state: _RequestState, response: ExtractionResponse, step: ProcessingStep) -> None:
        req = state.request
        if req.document is not None:
            if req.document.is_empty():
                raise RequestValidationError("document text is empty")
            document = req.document
        else:
            text = req.text.strip()
            if not text:
                raise RequestValidationError("text is empty after trimming")
            document = Document(text)
        state.document = document
        state.chunks = chunk_text(document.text, self.config.max_char_buffer)
        step.metadata = {
            "document_id": document.document_id,
            "length": len(document),
            "tokens": document.token_count,
            "chunks": len(state.chunks),
        }

    def _pass_count(self, state: _RequestState) -> int:
        explicit = state.request.extraction_passes
        if explicit is not None:
            return explicit
        if not self.config.enable_multi_pass:
            return 1
        n = len(state.document.text)
        passes = 1 if n < 5000 else 2 if n < 10000 else 3
        return min(passes, self.config.max_passes)

    def _extract(self, state: _RequestState, response: ExtractionResponse, step: ProcessingStep) -> None:
        ctx = state.request.context
        total = self._pass_count(state)
        state.total_passes = total
        seen: set[tuple[str, str]] = set()
        stopped_early = False

        for pass_number in range(1, total + 1):
            ctx.raise_if_done()
            state.current_pass = pass_number
            state.message = f"extraction pass {pass_number}/{total}"
            self._notify(state)

            pass_step = ProcessingStep(name=f"extraction.pass_{pass_number}", started_at=time.time())
            t0 = time.perf_counter()
            try:
                found = self._run_pass(state, response, pass_number)
            except ContextError:
                raise
            except Exception as exc:
                if pass_number == 1:
                    raise
                pass_step.status = StepStatus.ERROR
                pass_step.message = str(exc)
                pass_step.duration = time.perf_counter() - t0
                response.add_step(pass_step)
                step.status = StepStatus.WARNING
                step.message = f"pass {pass_number} failed, keeping {pass_number - 1} completed passes"
                logger.warning("[engine] %s pass %d failed: %s", state.request.id, pass_number, exc)
                break

            keys = {e.key for e in found}
            new_keys = keys - seen
            seen |= keys
            state.extractions.extend(found)
            response.passes_completed = pass_number
            pass_step.duration = time.perf_counter() - t0
            pass_step.metadata = {
                "found": len(found),
                "new": len(new_keys),
                "chunks": state.chunks_processed,
                "provider": response.provider_used,
            }
            response.add_step(pass_step)

            if self.config.enable_multi_pass and pass_number > 1 and seen:
                ratio = len(new_keys) / len(seen)
                if ratio < self.config.pass_improvement_threshold and pass_number < total:
                    stopped_early = True
                    logger.info(
                        "[engine] %s stopping after pass %d: improvement %.3f < %.3f",
                        state.request.id, pass_number, ratio, self.config.pass_improvement_threshold,
                    )
                    break

        step.metadata = {
            "total_passes": total,
            "passes_completed": response.passes_completed,
            "stopped_early": stopped_early,
            "extractions": len(state.extractions),
        }

    def _run_pass(self, state: _RequestState, response: ExtractionResponse, pass_number: int) -> list[Extraction]:
        found: list[Extraction] = []
        state.current_chunk = 0
        state.chunks_processed = 0
        for chunk in state.chunks:
            state.request.context.raise_if_done()
            state.current_chunk = chunk.index + 1
            found.extend(self._process_chunk(state, response, pass_number, chunk, len(state.extractions) + len(found)))
            state.chunks_processed += 1
            if len(state.chunks) > 1:
                logger.debug(
                    "[engine] %s pass %d chunk %d/%d done | %d extractions so far",
                    state.request.id, pass_number, state.current_chunk, len(state.chunks), len(found),
                )
        return found

    def _process_chunk(
        self,
        state: _RequestState,
        response: ExtractionResponse,
        pass_number: int,
        chunk: TextChunk,
        offset: int,
    ) -> list[Extraction]:
        """Prompt the model with one chunk and map its answers to document offsets."""
        req = state.request
        document = state.document
        if len(state.chunks) == 1:
            chunk_doc = document
            previous = state.extractions
        else:
            chunk_doc = Document(chunk.text, document.additional_context)
            previous = [
                e for e in state.extractions
                if e.char_interval is not None and chunk.start_char <= e.char_interval.start < chunk.end_char
            ]
        prompt = build_prompt(
            req.task_description,
            chunk_doc,
            req.examples,
            req.schema,
            pass_number=pass_number,
            previous=previous,
        )
        if self.config.enable_debug_mode:
            response.debug.prompts.append(prompt)

        answer = self.gateway.execute_with_failover(
            req.context,
            req,
            prompt,
            timeout=self.config.default_timeout,
            failover_log=response.debug.failover_events,
        )
        response.provider_used = answer.provider
        response.model_used = answer.model
        response.tokens_used += answer.tokens_used
        response.debug.retry_attempts += answer.retries
        if self.config.enable_debug_mode:
            response.debug.raw_responses.append(answer.text)

        parsed = parse_extractions(answer.text)
        results = self.aligner.align_extractions(
            [e.extraction_text for e in parsed], chunk.text, self.config.alignment, req.context
        )
        for i, (ext, result) in enumerate(zip(parsed, results)):
            ext.extraction_index = offset + i
            ext.alignment_status = result.status
            ext.alignment_quality = result.quality
            if result.is_aligned():
                ext.char_interval = chunk.to_source(result.interval)
                ext.token_interval = document.token_interval(ext.char_interval)
        return parsed

    def _aggregate(self, state: _RequestState, response: ExtractionResponse, step: ProcessingStep) -> None:
        if not self.config.enable_deduplication or not state.extractions:
            step.status = StepStatus.SKIPPED
            return
        original = state.extractions
        deduped = deduplicate(original)
        resolved = resolve_overlaps(deduped, self.config.overlap_strategy, state.document.text)
        filtered = filter_by_confidence(resolved, self.config.confidence_threshold)
        state.extractions = filtered
        step.metadata = {
            "original_count": len(original),
            "final_count": len(filtered),
            "duplicates_removed": len(original) - len(deduped),
            "overlaps_resolved": len(deduped) - len(resolved),
            "low_confidence_filtered": len(resolved) - len(filtered),
        }

    def _validate(self, state: _RequestState, response: ExtractionResponse, step: ProcessingStep) -> None:
        schema = state.request.schema
        if schema is None or not state.request.validate_output:
            step.status = StepStatus.SKIPPED
            return
        valid = []
        for ext in state.extractions:
            try:
                schema.validate_extraction(ext)
            except SchemaValidationError as exc:
                response.validation_errors.append(ValidationIssue(
                    field=exc.field,
                    value=exc.value,
                    constraint=exc.constraint,
                    message=str(exc),
                    extraction_index=ext.extraction_index,
                ))
                continue
            valid.append(ext)

        dropped = len(state.extractions) - len(valid)
        count_issues = schema.validate_counts(valid) if hasattr(schema, "validate_counts") else []
        for exc in count_issues:
            response.validation_errors.append(ValidationIssue(
                field=exc.field, value=exc.value, constraint=exc.constraint, message=str(exc)
            ))
        state.extractions = valid
        if dropped or count_issues:
            step.status = StepStatus.WARNING
            step.message = f"dropped {dropped} invalid extractions; {len(count_issues)} count issues"
        step.metadata = {"validated": len(valid) + dropped, "dropped": dropped}

    def _finalize(self, state: _RequestState, response: ExtractionResponse, step: ProcessingStep) -> None:
        self._summarize(state, response)
        step.metadata = {
            "extraction_count": response.extraction_count,
            "text_coverage": response.text_coverage,
            "confidence_score": response.confidence_score,
        }

    def _summarize(self, state: _RequestState, response: ExtractionResponse) -> None:
        document = state.document
        extractions = list(state.extractions)
        if document is not None:
            for ext in extractions:
                if ext.char_interval is not None and ext.token_interval is None:
                    ext.token_interval = document.token_interval(ext.char_interval)
            annotated = AnnotatedDocument(document, tuple(extractions))
            response.annotated_document = annotated
            response.text_coverage = annotated.coverage()
        response.extractions = extractions
        response.extraction_count = len(extractions)
        confidences = [e.confidence for e in extractions if e.confidence is not None]
        response.confidence_score = sum(confidences) / len(confidences) if confidences else None
