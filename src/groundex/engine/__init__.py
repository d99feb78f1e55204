"""Extraction engine: staged pipeline, provider gateway, aggregation."""

from .aggregation import deduplicate, filter_by_confidence, resolve_overlaps
from .config import ENGINE_PRESETS, EngineConfig, GatewayConfig, OverlapStrategy, get_preset
from .gateway import GatewayResponse, ProviderGateway, ProviderHealth, ProviderTarget, ResponseCache
from .parsing import parse_extractions
from .pipeline import ExtractionEngine
from .progress import ProgressReporter
from .prompts import build_prompt
from .types import (
    DebugInfo,
    ExtractionProgress,
    ExtractionRequest,
    ExtractionResponse,
    FailoverEvent,
    ProcessingStep,
    SealedResponseError,
    Stage,
    StepStatus,
    ValidationIssue,
)

__all__ = [
    "DebugInfo",
    "ENGINE_PRESETS",
    "EngineConfig",
    "ExtractionEngine",
    "ExtractionProgress",
    "ExtractionRequest",
    "ExtractionResponse",
    "FailoverEvent",
    "GatewayConfig",
    "GatewayResponse",
    "OverlapStrategy",
    "ProcessingStep",
    "ProgressReporter",
    "ProviderGateway",
    "ProviderHealth",
    "ProviderTarget",
    "ResponseCache",
    "SealedResponseError",
    "Stage",
    "StepStatus",
    "ValidationIssue",
    "build_prompt",
    "deduplicate",
    "filter_by_confidence",
    "get_preset",
    "parse_extractions",
    "resolve_overlaps",
]
