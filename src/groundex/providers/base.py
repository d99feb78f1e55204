"""Provider abstraction: an opaque ``call(ctx, prompt, config)`` capability."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import classify_provider_exception
from ..shared.context import ExecutionContext


class ProviderName(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    OLLAMA = "ollama"


@dataclass(frozen=True)
class ModelConfig:
    """Model selection and sampling parameters for one call."""

    model_id: str
    provider: str | None = None
    temperature: float = 0.0
    max_tokens: int = 1024
    top_p: float = 1.0
    provider_kwargs: dict[str, Any] = field(default_factory=dict, hash=False)

    def with_provider(self, provider: str | ProviderName) -> ModelConfig:
        return replace(self, provider=str(getattr(provider, "value", provider)))


@dataclass
class CallResult:
    text: str
    tokens_used: int = 0


class LLMProvider(ABC):
    """A language model backend.

    ``call`` must observe ``ctx`` (cancellation and deadline) and raise
    errors from the provider taxonomy in ``groundex.errors``; the gateway
    retries and fails over on the recoverable ones.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def call(self, ctx: ExecutionContext, prompt: str, config: ModelConfig) -> CallResult:
        pass

    def is_available(self) -> bool:
        return True


class FunctionProvider(LLMProvider):
    """Adapts a plain ``generate(prompt, model, temperature, max_tokens, timeout)``
    function into a provider.

    The function may return text or ``(text, tokens_used)``. Whatever it
    raises is mapped onto the provider error taxonomy.
    """

    def __init__(self, name: str, generate: Callable[..., str | tuple[str, int]]):
        self._name = name
        self._generate = generate

    @property
    def name(self) -> str:
        return self._name

    def call(self, ctx: ExecutionContext, prompt: str, config: ModelConfig) -> CallResult:
        ctx.raise_if_done()
        try:
            out = self._generate(
                prompt,
                model=config.model_id,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=ctx.remaining(),
            )
        except Exception as exc:
            raise classify_provider_exception(exc, self._name) from exc
        if isinstance(out, tuple):
            text, tokens = out
            return CallResult(text=text, tokens_used=int(tokens))
        return CallResult(text=out, tokens_used=0)
