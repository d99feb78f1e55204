"""Tests for engine configuration, presets and environment overrides."""
import pytest

from groundex.alignment import AlignmentOptions
from groundex.engine.config import ENGINE_PRESETS, EngineConfig, OverlapStrategy, get_preset
from groundex.errors import AlignmentError


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.max_concurrent_requests == 10
        assert config.default_timeout == 60.0
        assert config.confidence_threshold == 0.5
        assert config.overlap_strategy is OverlapStrategy.KEEP_HIGHEST_CONFIDENCE
        assert not config.enable_multi_pass

    def test_strategy_from_string(self):
        assert EngineConfig(overlap_strategy="merge").overlap_strategy is OverlapStrategy.MERGE_OVERLAPPING

    @pytest.mark.parametrize("kwargs", [
        {"max_concurrent_requests": 0},
        {"max_passes": 0},
        {"confidence_threshold": 1.5},
        {"progress_interval": 0},
        {"max_char_buffer": 0},
        {"overlap_strategy": "random"},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_invalid_alignment_options(self):
        with pytest.raises(AlignmentError):
            EngineConfig(alignment=AlignmentOptions(max_distance=-1))


class TestPresets:
    def test_known_presets(self):
        assert set(ENGINE_PRESETS) == {"default", "thorough", "strict"}
        for name, preset in ENGINE_PRESETS.items():
            assert preset.name == name

    def test_thorough_enables_multi_pass(self):
        preset = get_preset("thorough")
        assert preset.enable_multi_pass
        assert preset.overlap_strategy is OverlapStrategy.MERGE_OVERLAPPING

    def test_get_preset_returns_copy(self):
        preset = get_preset("default")
        preset.max_passes = 9
        assert ENGINE_PRESETS["default"].max_passes == 3

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown preset"):
            get_preset("turbo")


class TestFromEnv:
    def test_empty_environment_is_default(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_overrides(self):
        config = EngineConfig.from_env({
            "GROUNDEX_PRESET": "strict",
            "GROUNDEX_MAX_CONCURRENT": "4",
            "GROUNDEX_TIMEOUT": "12.5",
            "GROUNDEX_MULTI_PASS": "TRUE",
            "GROUNDEX_OVERLAP_STRATEGY": "first",
            "GROUNDEX_DEBUG": "false",
            "GROUNDEX_MAX_CHAR_BUFFER": "2000",
        })
        assert config.name == "strict"
        assert config.max_concurrent_requests == 4
        assert config.default_timeout == 12.5
        assert config.enable_multi_pass
        assert config.overlap_strategy is OverlapStrategy.KEEP_FIRST
        assert not config.enable_debug_mode
        assert config.confidence_threshold == 0.7
        assert config.max_char_buffer == 2000
        assert EngineConfig.from_env({"GROUNDEX_MAX_CHAR_BUFFER": "0"}).max_char_buffer is None

    def test_invalid_override_is_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig.from_env({"GROUNDEX_CONFIDENCE_THRESHOLD": "2"})
