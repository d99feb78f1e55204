"""Shared test fixtures."""
from __future__ import annotations

import json
import threading

import pytest

from groundex.engine.config import EngineConfig, GatewayConfig
from groundex.engine.gateway import ProviderGateway, ProviderTarget
from groundex.engine.pipeline import ExtractionEngine
from groundex.providers.base import CallResult, LLMProvider, ModelConfig


class ScriptedProvider(LLMProvider):
    """Provider that replays a script of responses and exceptions.

    Each entry is a string (returned as the answer), an exception instance
    (raised), or a callable ``(ctx, prompt) -> str``. The last entry repeats
    once the script runs out.
    """

    def __init__(self, name: str, script: list, tokens: int = 10):
        self._name = name
        self.script = list(script)
        self.tokens = tokens
        self.calls: list[str] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def call(self, ctx, prompt, config: ModelConfig) -> CallResult:
        with self._lock:
            index = len(self.calls)
            self.calls.append(prompt)
            entry = self.script[min(index, len(self.script) - 1)]
        if callable(entry) and not isinstance(entry, BaseException):
            entry = entry(ctx, prompt)
        if isinstance(entry, BaseException):
            raise entry
        return CallResult(text=entry, tokens_used=self.tokens)


def answer(*items: tuple) -> str:
    """Model answer with ``(class, text[, confidence])`` items."""
    extractions = []
    for item in items:
        data = {"extraction_class": item[0], "extraction_text": item[1]}
        if len(item) > 2 and item[2] is not None:
            data["confidence"] = item[2]
        extractions.append(data)
    return json.dumps({"extractions": extractions})


@pytest.fixture
def sample_text():
    return "John Smith works at Google Inc. in Mountain View."


@pytest.fixture
def fast_gateway_config():
    return GatewayConfig(initial_backoff=0.0, max_backoff=0.0, jitter_factor=0.0, enable_cache=False)


@pytest.fixture
def make_gateway(fast_gateway_config):
    def _make(*providers: LLMProvider, config: GatewayConfig | None = None) -> ProviderGateway:
        targets = [
            ProviderTarget(name=p.name, provider=p, model=ModelConfig(model_id=f"{p.name}-model"), priority=i)
            for i, p in enumerate(providers)
        ]
        return ProviderGateway(targets, config or fast_gateway_config)
    return _make


@pytest.fixture
def make_engine(make_gateway):
    def _make(*providers: LLMProvider, config: EngineConfig | None = None) -> ExtractionEngine:
        return ExtractionEngine(make_gateway(*providers), config or EngineConfig(progress_interval=0.05))
    return _make


@pytest.fixture
def scripted():
    return ScriptedProvider


@pytest.fixture
def make_answer():
    return answer
