"""Provider registry: resolve a ModelConfig to a provider instance."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from ..errors import ProviderError
from .base import LLMProvider, ModelConfig, ProviderName

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ModelConfig], LLMProvider]

MODEL_FAMILIES: dict[ProviderName, tuple[str, ...]] = {
    ProviderName.OPENAI: ("gpt-4", "gpt-4-turbo", "gpt-3.5-turbo", "gpt-4o", "gpt-4o-mini", "text-davinci-003"),
    ProviderName.GEMINI: ("gemini-2.5-flash", "gemini-2.5-pro", "gemini-1.5-pro", "gemini-1.5-flash", "gemini-pro"),
    ProviderName.OLLAMA: (
        "llama3.2", "llama3.2:1b", "llama3.2:3b",
        "llama3.1", "llama3.1:8b", "llama3.1:70b",
        "codellama", "mistral", "qwen2.5",
    ),
}


def infer_provider(model_id: str) -> ProviderName | None:
    """Known model family for a model id, if any."""
    for provider, models in MODEL_FAMILIES.items():
        if model_id in models:
            return provider
    return None


class ProviderRegistry:
    """Maps provider names to factories. Instances are constructed and passed
    around explicitly; there is no module-level default registry."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._factories: dict[str, ProviderFactory] = {}
        self._aliases: dict[str, str] = {}

    def register(self, name: str | ProviderName, factory: ProviderFactory) -> None:
        key = _key(name)
        with self._lock:
            self._factories[key] = factory
        logger.debug("[providers] registered %s", key)

    def register_alias(self, model_id: str, provider: str | ProviderName) -> None:
        with self._lock:
            self._aliases[model_id] = _key(provider)

    def resolve(self, config: ModelConfig) -> str:
        """Provider name for a config: explicit, then alias, then model family."""
        if config.provider:
            return config.provider
        with self._lock:
            alias = self._aliases.get(config.model_id)
        if alias:
            return alias
        family = infer_provider(config.model_id)
        if family is not None:
            return family.value
        raise ProviderError(
            f"no provider specified and no alias or known model family for model id: {config.model_id}"
        )

    def create(self, config: ModelConfig) -> LLMProvider:
        name = self.resolve(config)
        with self._lock:
            factory = self._factories.get(name)
        if factory is None:
            raise ProviderError(f"unknown provider: {name}. Available: {self.available()}", provider=name)
        return factory(config.with_provider(name))

    def available(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def has(self, name: str | ProviderName) -> bool:
        with self._lock:
            return _key(name) in self._factories


def _key(name: str | ProviderName) -> str:
    return name.value if isinstance(name, ProviderName) else str(name)
