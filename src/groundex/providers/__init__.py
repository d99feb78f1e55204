"""Model provider abstraction and registry."""

from .base import CallResult, FunctionProvider, LLMProvider, ModelConfig, ProviderName
from .registry import MODEL_FAMILIES, ProviderRegistry, infer_provider

__all__ = [
    "CallResult",
    "FunctionProvider",
    "LLMProvider",
    "MODEL_FAMILIES",
    "ModelConfig",
    "ProviderName",
    "ProviderRegistry",
    "infer_provider",
]
