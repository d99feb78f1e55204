"""Provider gateway: retries, failover, health tracking and response caching."""

from __future__ import annotations

import hashlib
import logging
import random
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace

from ..errors import (
    ContextError,
    ProviderError,
    ProvidersExhaustedError,
    ProviderTimeoutError,
    classify_provider_exception,
)
from ..providers.base import CallResult, LLMProvider, ModelConfig
from ..providers.registry import ProviderRegistry, infer_provider
from ..shared.context import ExecutionContext
from .config import GatewayConfig
from .types import DEFAULT_RETRY_COUNT, ExtractionRequest, FailoverEvent

logger = logging.getLogger(__name__)


@dataclass
class ProviderTarget:
    name: str
    provider: LLMProvider
    model: ModelConfig
    priority: int = 0


@dataclass
class ProviderHealth:
    name: str
    is_healthy: bool = True
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency: float = 0.0
    last_error: str | None = None
    last_checked: float | None = None

    @property
    def success_rate(self) -> float:
        return self.successful_requests / self.total_requests if self.total_requests else 1.0


@dataclass
class GatewayResponse:
    text: str
    tokens_used: int
    provider: str
    model: str
    latency: float
    attempts: int = 1
    retries: int = 0
    cached: bool = False
    failover_events: list[FailoverEvent] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry:
    result: CallResult
    created: float
    hits: int = 0


class ResponseCache:
    """TTL cache of provider answers keyed by prompt and sampling parameters.

    When full, the oldest entry is evicted.
    """

    def __init__(self, ttl: float = 300.0, max_entries: int = 1000):
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def key(prompt: str, config: ModelConfig) -> str:
        raw = f"{prompt}|{config.model_id}|{config.temperature}|{config.max_tokens}|{config.top_p}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> CallResult | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and time.monotonic() - entry.created > self.ttl:
                del self._entries[key]
                entry = None
            if entry is None:
                self.misses += 1
                return None
            entry.hits += 1
            self.hits += 1
            return entry.result

    def put(self, key: str, result: CallResult) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
                self.evictions += 1
            self._entries[key] = _CacheEntry(result=result, created=time.monotonic())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, float]:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "hit_rate": self.hits / total if total else 0.0,
            }


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class ProviderGateway:
    """Calls providers in priority order, retrying and failing over.

    Each target gets ``max(1, request.retry_count)`` attempts for recoverable
    errors before the gateway moves to the next target. Non-recoverable
    errors are raised immediately.
    """

    def __init__(self, targets: list[ProviderTarget], config: GatewayConfig | None = None):
        if not targets:
            raise ValueError("at least one provider target is required")
        names = [t.name for t in targets]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate provider target names: {names}")
        self.config = config or GatewayConfig()
        self.targets = list(targets)
        self._health = {t.name: ProviderHealth(name=t.name) for t in targets}
        self._health_lock = threading.Lock()
        self.cache = (
            ResponseCache(self.config.cache_ttl, self.config.cache_max_entries) if self.config.enable_cache else None
        )

    @classmethod
    def from_registry(
        cls,
        registry: ProviderRegistry,
        models: list[ModelConfig],
        config: GatewayConfig | None = None,
    ) -> ProviderGateway:
        """One target per model config, prioritised in list order."""
        targets = []
        for priority, model in enumerate(models):
            name = registry.resolve(model)
            targets.append(ProviderTarget(
                name=name,
                provider=registry.create(model),
                model=model.with_provider(name),
                priority=priority,
            ))
        return cls(targets, config)

    # -- health -------------------------------------------------------------

    def provider_health(self) -> dict[str, ProviderHealth]:
        with self._health_lock:
            return {name: replace(h) for name, h in self._health.items()}

    def _record_success(self, name: str, latency: float) -> None:
        with self._health_lock:
            h = self._health[name]
            h.total_requests += 1
            h.successful_requests += 1
            h.consecutive_successes += 1
            h.consecutive_failures = 0
            h.last_checked = time.time()
            alpha = self.config.latency_smoothing
            h.average_latency = latency if h.successful_requests == 1 else (1 - alpha) * h.average_latency + alpha * latency
            if not h.is_healthy and h.consecutive_successes >= self.config.recovery_threshold:
                h.is_healthy = True
                logger.info("[gateway] %s recovered", name)

    def _record_failure(self, name: str, error: Exception) -> None:
        with self._health_lock:
            h = self._health[name]
            h.total_requests += 1
            h.failed_requests += 1
            h.consecutive_failures += 1
            h.consecutive_successes = 0
            h.last_error = str(error)
            h.last_checked = time.time()
            if h.is_healthy and h.consecutive_failures >= self.config.unhealthy_threshold:
                h.is_healthy = False
                logger.warning("[gateway] %s marked unhealthy after %d failures", name, h.consecutive_failures)

    def cache_stats(self) -> dict[str, float]:
        return self.cache.stats() if self.cache else {}

    # -- ordering -----------------------------------------------------------

    def preferred_target(self, request: ExtractionRequest) -> str | None:
        if request.provider:
            return request.provider
        if request.model_id:
            family = infer_provider(request.model_id)
            if family is not None:
                return family.value
        return None

    def ordered_targets(self, preferred: str | None = None) -> list[ProviderTarget]:
        """Preferred target first, unhealthy or unavailable ones last, then by priority."""
        with self._health_lock:
            healthy = {name: h.is_healthy for name, h in self._health.items()}

        def rank(item):
            idx, t = item
            usable = healthy[t.name] and t.provider.is_available()
            return (t.name != preferred, not usable, t.priority, idx)

        return [t for _, t in sorted(enumerate(self.targets), key=rank)]

    def _model_config(self, target: ProviderTarget, request: ExtractionRequest, preferred: str | None) -> ModelConfig:
        model = target.model
        updates = {"temperature": request.temperature}
        if request.max_tokens is not None:
            updates["max_tokens"] = request.max_tokens
        if request.model_id and target.name == preferred:
            updates["model_id"] = request.model_id
        return replace(model, **updates)

    # -- retry helpers ------------------------------------------------------

    def _calculate_backoff(self, attempt: int, retry_after: float | None) -> float:
        cfg = self.config
        if retry_after is not None:
            return min(retry_after, cfg.max_backoff)
        backoff = cfg.initial_backoff * (cfg.backoff_multiplier ** attempt)
        backoff = min(backoff, cfg.max_backoff)
        jitter = backoff * cfg.jitter_factor * random.random()
        return backoff + jitter

    # -- main entry point ---------------------------------------------------

    def execute_with_failover(
        self,
        ctx: ExecutionContext,
        request: ExtractionRequest,
        prompt: str,
        timeout: float | None = None,
        failover_log: list[FailoverEvent] | None = None,
    ) -> GatewayResponse:
        """Send ``prompt`` to the first target that answers.

        Failover events are appended to ``failover_log`` as they happen so
        callers keep them even when this raises.

        Raises:
            ProviderError: a non-recoverable provider error.
            ProvidersExhaustedError: every target failed recoverably.
            ContextError: ``ctx`` was cancelled or its deadline passed.
        """
        preferred = self.preferred_target(request)
        targets = self.ordered_targets(preferred)
        retry_count = DEFAULT_RETRY_COUNT if request.retry_count is None else request.retry_count
        max_attempts = max(1, retry_count)
        call_timeout = request.timeout if request.timeout is not None else timeout
        events: list[FailoverEvent] = []
        attempts: dict[str, int] = {}
        retries = 0
        last_error: ProviderError | None = None

        for i, target in enumerate(targets):
            config = self._model_config(target, request, preferred)
            cache_key = ResponseCache.key(prompt, config) if self.cache else None
            if cache_key is not None:
                hit = self.cache.get(cache_key)
                if hit is not None:
                    logger.debug("[gateway] cache hit | provider=%s | model=%s", target.name, config.model_id)
                    self._mark_fallback_success(events)
                    return GatewayResponse(
                        text=hit.text,
                        tokens_used=hit.tokens_used,
                        provider=target.name,
                        model=config.model_id,
                        latency=0.0,
                        attempts=0,
                        retries=retries,
                        cached=True,
                        failover_events=events,
                    )

            for attempt in range(max_attempts):
                ctx.raise_if_done()
                attempts[target.name] = attempt + 1
                call_ctx = ctx.child(call_timeout)
                start = time.perf_counter()
                try:
                    result = target.provider.call(call_ctx, prompt, config)
                except Exception as exc:
                    if ctx.done():
                        raise ctx.error() from exc
                    if isinstance(exc, ContextError):
                        err = ProviderTimeoutError(f"call exceeded {call_timeout}s", target.name)
                    else:
                        err = classify_provider_exception(exc, target.name)
                    if err is not exc:
                        err.__cause__ = exc
                else:
                    latency = time.perf_counter() - start
                    self._record_success(target.name, latency)
                    self._mark_fallback_success(events)
                    if cache_key is not None:
                        self.cache.put(cache_key, result)
                    if attempt > 0:
                        logger.info(
                            "[gateway] RECOVERED after %d retries | provider=%s | model=%s",
                            attempt,
                            target.name,
                            config.model_id,
                        )
                    logger.debug(
                        "[gateway] OK | provider=%s | model=%s | tokens=%d | %.2fs",
                        target.name,
                        config.model_id,
                        result.tokens_used,
                        latency,
                    )
                    return GatewayResponse(
                        text=result.text,
                        tokens_used=result.tokens_used,
                        provider=target.name,
                        model=config.model_id,
                        latency=latency,
                        attempts=attempt + 1,
                        retries=retries,
                        failover_events=events,
                    )
                finally:
                    call_ctx.release()

                self._record_failure(target.name, err)
                last_error = err
                if not err.recoverable:
                    logger.error("[gateway] FAILED %s | provider=%s | %s", type(err).__name__, target.name, err)
                    raise err

                if attempt + 1 < max_attempts:
                    backoff = self._calculate_backoff(attempt, getattr(err, "retry_after", None))
                    retries += 1
                    logger.info(
                        "[gateway] RETRY %s | attempt=%d/%d | provider=%s | wait=%.1fs",
                        type(err).__name__,
                        attempt + 1,
                        max_attempts,
                        target.name,
                        backoff,
                    )
                    if not ctx.sleep(backoff):
                        ctx.raise_if_done()

            if i + 1 < len(targets):
                event = FailoverEvent(
                    original_provider=target.name,
                    reason=str(last_error),
                    fallback_provider=targets[i + 1].name,
                )
                events.append(event)
                if failover_log is not None:
                    failover_log.append(event)
                logger.warning(
                    "[gateway] FAILOVER %s -> %s | %s", target.name, targets[i + 1].name, last_error
                )

        raise ProvidersExhaustedError(
            f"all providers failed: {', '.join(t.name for t in targets)}; last error: {last_error}",
            attempts=attempts,
            last_error=last_error,
        )

    @staticmethod
    def _mark_fallback_success(events: list[FailoverEvent]) -> None:
        if events:
            events[-1].success = True
