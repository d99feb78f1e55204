"""Request, response and progress types for the extraction engine."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..document import AnnotatedDocument, Document
from ..errors import error_code as code_for
from ..schema import ExtractionSchema
from ..shared.context import ExecutionContext
from ..types import ExampleData, Extraction

DEFAULT_RETRY_COUNT = 2


class Stage(str, Enum):
    INITIALIZATION = "initialization"
    PREPROCESSING = "preprocessing"
    EXTRACTION = "extraction"
    AGGREGATION = "aggregation"
    VALIDATION = "validation"
    FINALIZATION = "finalization"


class StepStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class ExtractionProgress:
    request_id: str
    stage: str
    progress: float
    message: str = ""
    elapsed: float = 0.0
    current_pass: int = 0
    total_passes: int = 0
    current_chunk: int = 0
    chunks_processed: int = 0
    total_chunks: int = 0


ProgressCallback = Callable[[ExtractionProgress], None]


@dataclass
class ExtractionRequest:
    """One extraction job.

    Either ``document`` or ``text`` must be given. ``provider`` names the
    preferred gateway target; the others remain available for failover.
    """

    task_description: str
    text: str | None = None
    document: Document | None = None
    examples: list[ExampleData] = field(default_factory=list)
    schema: ExtractionSchema | None = None
    provider: str | None = None
    model_id: str | None = None
    temperature: float = 0.0
    max_tokens: int | None = None
    timeout: float | None = None
    retry_count: int | None = DEFAULT_RETRY_COUNT
    validate_output: bool = True
    extraction_passes: int | None = None
    context: ExecutionContext = field(default_factory=ExecutionContext)
    progress_callback: ProgressCallback | None = None
    id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:16]}")


@dataclass
class ProcessingStep:
    name: str
    started_at: float
    duration: float = 0.0
    status: StepStatus = StepStatus.SUCCESS
    message: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class FailoverEvent:
    original_provider: str
    reason: str
    fallback_provider: str
    success: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class ValidationIssue:
    field: str
    value: Any
    constraint: str
    message: str
    extraction_index: int | None = None


class SealedResponseError(RuntimeError):
    pass


@dataclass
class DebugInfo:
    steps: list[ProcessingStep] = field(default_factory=list)
    failover_events: list[FailoverEvent] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)
    raw_responses: list[str] = field(default_factory=list)
    retry_attempts: int = 0

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_frozen"):
            raise SealedResponseError(f"debug info is sealed; cannot set {name}")
        super().__setattr__(name, value)

    def freeze(self) -> None:
        for name in ("steps", "failover_events", "prompts", "raw_responses"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(self, "_frozen", True)


@dataclass
class ExtractionResponse:
    """Outcome of ``ExtractionEngine.process``.

    Carries whatever was accumulated before a failure. Once the pipeline
    finishes, the response is sealed: list fields become tuples and
    further mutation raises.
    """

    request_id: str
    extractions: list[Extraction] = field(default_factory=list)
    annotated_document: AnnotatedDocument | None = None
    provider_used: str | None = None
    model_used: str | None = None
    tokens_used: int = 0
    passes_completed: int = 0
    extraction_count: int = 0
    text_coverage: float = 0.0
    confidence_score: float | None = None
    validation_errors: list[ValidationIssue] = field(default_factory=list)
    error: Exception | None = None
    error_code: str | None = None
    execution_time: float = 0.0
    current_stage: str = Stage.INITIALIZATION.value
    debug: DebugInfo = field(default_factory=DebugInfo)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.__dict__.get("_sealed"):
            raise SealedResponseError(f"response {self.request_id} is sealed; cannot set {name}")
        super().__setattr__(name, value)

    @property
    def is_successful(self) -> bool:
        return self.error is None

    @property
    def sealed(self) -> bool:
        return bool(self.__dict__.get("_sealed"))

    def fail(self, exc: Exception) -> None:
        self.error = exc
        self.error_code = code_for(exc)

    def add_step(self, step: ProcessingStep) -> None:
        if self.sealed:
            raise SealedResponseError(f"response {self.request_id} is sealed")
        self.debug.steps.append(step)

    def seal(self) -> None:
        self.extractions = tuple(self.extractions)
        self.validation_errors = tuple(self.validation_errors)
        self.debug.freeze()
        object.__setattr__(self, "_sealed", True)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "success": self.is_successful,
            "error": str(self.error) if self.error else None,
            "error_code": self.error_code,
            "provider_used": self.provider_used,
            "model_used": self.model_used,
            "tokens_used": self.tokens_used,
            "passes_completed": self.passes_completed,
            "extraction_count": self.extraction_count,
            "text_coverage": self.text_coverage,
            "confidence_score": self.confidence_score,
            "execution_time": self.execution_time,
            "extractions": [e.to_dict() for e in self.extractions],
            "validation_errors": [
                {"field": v.field, "constraint": v.constraint, "message": v.message}
                for v in self.validation_errors
            ],
            "failover_events": [
                {
                    "original_provider": f.original_provider,
                    "fallback_provider": f.fallback_provider,
                    "reason": f.reason,
                    "success": f.success,
                }
                for f in self.debug.failover_events
            ],
            "steps": [
                {"name": s.name, "status": s.status.value, "duration": s.duration, "message": s.message}
                for s in self.debug.steps
            ],
        }
