"""groundex: LLM-driven structured extraction grounded in source text."""

from .alignment import AlignmentOptions, AlignmentResult, TextAligner
from .batch import BatchResult, BatchSummary, run_batch
from .document import AnnotatedDocument, Document
from .engine import (
    EngineConfig,
    ExtractionEngine,
    ExtractionRequest,
    ExtractionResponse,
    GatewayConfig,
    OverlapStrategy,
    ProviderGateway,
    ProviderTarget,
)
from .errors import GroundexError
from .providers import FunctionProvider, LLMProvider, ModelConfig, ProviderName, ProviderRegistry
from .schema import BasicExtractionSchema, ClassDefinition, ExtractionSchema, FieldDefinition
from .shared import ExecutionContext, PipelineLogger
from .types import AlignmentStatus, CharInterval, ExampleData, Extraction, TokenInterval

__version__ = "0.1.0"

__all__ = [
    "AlignmentOptions",
    "AlignmentResult",
    "AlignmentStatus",
    "AnnotatedDocument",
    "BasicExtractionSchema",
    "BatchResult",
    "BatchSummary",
    "CharInterval",
    "ClassDefinition",
    "Document",
    "EngineConfig",
    "ExampleData",
    "ExecutionContext",
    "Extraction",
    "ExtractionEngine",
    "ExtractionRequest",
    "ExtractionResponse",
    "ExtractionSchema",
    "FieldDefinition",
    "FunctionProvider",
    "GatewayConfig",
    "GroundexError",
    "LLMProvider",
    "ModelConfig",
    "OverlapStrategy",
    "PipelineLogger",
    "ProviderGateway",
    "ProviderName",
    "ProviderRegistry",
    "ProviderTarget",
    "TextAligner",
    "TokenInterval",
    "run_batch",
]
