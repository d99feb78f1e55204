"""Engine and gateway configuration, presets and environment overrides.

Environment Variables (read by ``EngineConfig.from_env``):
    GROUNDEX_PRESET: base preset name (default: "default")
    GROUNDEX_MAX_CONCURRENT: max in-flight requests
    GROUNDEX_TIMEOUT: default per-call timeout in seconds
    GROUNDEX_MULTI_PASS: "true" to enable the multi-pass heuristic
    GROUNDEX_MAX_PASSES: cap on extraction passes
    GROUNDEX_MAX_CHAR_BUFFER: split documents into chunks of at most this many characters (0 disables)
    GROUNDEX_CONFIDENCE_THRESHOLD: drop extractions below this confidence
    GROUNDEX_OVERLAP_STRATEGY: one of the OverlapStrategy values
    GROUNDEX_DEBUG: "true" to keep prompts and raw responses on responses
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum

from ..alignment.options import AlignmentOptions

logger = logging.getLogger(__name__)


class OverlapStrategy(str, Enum):
    KEEP_HIGHEST_CONFIDENCE = "highest_confidence"
    KEEP_LONGEST = "longest"
    KEEP_FIRST = "first"
    MERGE_OVERLAPPING = "merge"


@dataclass
class EngineConfig:
    name: str = "default"

    max_concurrent_requests: int = 10
    default_timeout: float = 60.0
    enable_debug_mode: bool = False

    enable_multi_pass: bool = False
    max_passes: int = 3
    pass_improvement_threshold: float = 0.1
    max_char_buffer: int | None = None

    enable_deduplication: bool = True
    confidence_threshold: float = 0.5
    overlap_strategy: OverlapStrategy = OverlapStrategy.KEEP_HIGHEST_CONFIDENCE

    enable_progress_tracking: bool = True
    progress_interval: float = 1.0

    alignment: AlignmentOptions = field(default_factory=AlignmentOptions)

    def __post_init__(self) -> None:
        self.overlap_strategy = OverlapStrategy(self.overlap_strategy)
        if self.max_concurrent_requests < 1:
            raise ValueError(f"max_concurrent_requests must be >= 1, got {self.max_concurrent_requests}")
        if self.max_passes < 1:
            raise ValueError(f"max_passes must be >= 1, got {self.max_passes}")
        if self.max_char_buffer is not None and self.max_char_buffer < 1:
            raise ValueError(f"max_char_buffer must be >= 1, got {self.max_char_buffer}")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}")
        if self.progress_interval <= 0:
            raise ValueError(f"progress_interval must be > 0, got {self.progress_interval}")
        self.alignment.validate()

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        env = os.environ if environ is None else environ
        config = get_preset(env.get("GROUNDEX_PRESET", "default"))
        overrides: dict = {}
        if "GROUNDEX_MAX_CONCURRENT" in env:
            overrides["max_concurrent_requests"] = int(env["GROUNDEX_MAX_CONCURRENT"])
        if "GROUNDEX_TIMEOUT" in env:
            overrides["default_timeout"] = float(env["GROUNDEX_TIMEOUT"])
        if "GROUNDEX_MULTI_PASS" in env:
            overrides["enable_multi_pass"] = env["GROUNDEX_MULTI_PASS"].lower() == "true"
        if "GROUNDEX_MAX_PASSES" in env:
            overrides["max_passes"] = int(env["GROUNDEX_MAX_PASSES"])
        if "GROUNDEX_MAX_CHAR_BUFFER" in env:
            overrides["max_char_buffer"] = int(env["GROUNDEX_MAX_CHAR_BUFFER"]) or None
        if "GROUNDEX_CONFIDENCE_THRESHOLD" in env:
            overrides["confidence_threshold"] = float(env["GROUNDEX_CONFIDENCE_THRESHOLD"])
        if "GROUNDEX_OVERLAP_STRATEGY" in env:
            overrides["overlap_strategy"] = OverlapStrategy(env["GROUNDEX_OVERLAP_STRATEGY"])
        if "GROUNDEX_DEBUG" in env:
            overrides["enable_debug_mode"] = env["GROUNDEX_DEBUG"].lower() == "true"
        if overrides:
            logger.debug("[config] environment overrides: %s", sorted(overrides))
            config = replace(config, **overrides)
        return config


@dataclass
class GatewayConfig:
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1

    unhealthy_threshold: int = 3
    recovery_threshold: int = 2
    latency_smoothing: float = 0.2

    enable_cache: bool = True
    cache_ttl: float = 300.0
    cache_max_entries: int = 1000


ENGINE_PRESETS: dict[str, EngineConfig] = {
    "default": EngineConfig(name="default"),

    "thorough": EngineConfig(
        name="thorough",
        enable_multi_pass=True,
        max_passes=3,
        pass_improvement_threshold=0.05,
        confidence_threshold=0.3,
        overlap_strategy=OverlapStrategy.MERGE_OVERLAPPING,
        alignment=AlignmentOptions(ignore_punctuation=True, max_distance=8, min_confidence=0.6),
    ),

    "strict": EngineConfig(
        name="strict",
        confidence_threshold=0.7,
        overlap_strategy=OverlapStrategy.KEEP_LONGEST,
        alignment=AlignmentOptions(max_distance=2, min_confidence=0.85),
    ),
}


def get_preset(name: str) -> EngineConfig:
    if name not in ENGINE_PRESETS:
        raise ValueError(f"Unknown preset: {name!r}. Available: {list(ENGINE_PRESETS)}")
    return replace(ENGINE_PRESETS[name])
