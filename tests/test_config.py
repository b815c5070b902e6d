"""Tests for PipelineConfig validation and environment loading."""

import pytest

from textswap.config import PipelineConfig
from textswap.exceptions import ConfigurationError
from textswap.models import EngineClass, RotationPolicy, RoutingPolicy


class TestValidation:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.routing_policy is RoutingPolicy.BALANCED
        assert config.rotation_policy is RotationPolicy.CLAMP
        assert config.confidence_accept_threshold == 60.0
        assert config.min_region_size == (8, 8)

    def test_string_enums_are_coerced(self):
        config = PipelineConfig(routing_policy="local-only", rotation_policy="reject")
        assert config.routing_policy is RoutingPolicy.LOCAL_ONLY
        assert config.rotation_policy is RotationPolicy.REJECT

    @pytest.mark.parametrize("kwargs", [
        {"routing_policy": "fastest"},
        {"confidence_accept_threshold": 120},
        {"min_text_length": 0},
        {"min_region_size": (500, 8), "max_region_size": (400, 400)},
        {"min_working_size": (0, 32)},
        {"max_upscale_factor": 0.5},
        {"invert_variant": "sometimes"},
        {"local_engine_timeout_ms": 0},
        {"batch_timeout_ms": -5},
        {"min_detection_area_ratio": 0.9, "max_detection_area_ratio": 0.5},
        {"max_workers": 0},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            PipelineConfig(**kwargs)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            PipelineConfig(max_workers=0)

    def test_engine_timeout_in_seconds(self):
        config = PipelineConfig(local_engine_timeout_ms=1500, cloud_engine_timeout_ms=250)
        assert config.engine_timeout(EngineClass.LOCAL) == 1.5
        assert config.engine_timeout(EngineClass.CLOUD) == 0.25


class TestFromEnv:
    def test_reads_prefixed_variables(self):
        environ = {
            "TEXTSWAP_ROUTING_POLICY": "cloud-only",
            "TEXTSWAP_CONFIDENCE_ACCEPT_THRESHOLD": "75.5",
            "TEXTSWAP_MAX_WORKERS": "8",
            "TEXTSWAP_AUTO_RESIZE": "yes",
            "TEXTSWAP_MIN_WORKING_SIZE": "200x64",
            "UNRELATED": "ignored",
        }
        config = PipelineConfig.from_env(environ)
        assert config.routing_policy is RoutingPolicy.CLOUD_ONLY
        assert config.confidence_accept_threshold == 75.5
        assert config.max_workers == 8
        assert config.auto_resize is True
        assert config.min_working_size == (200, 64)

    def test_overrides_win(self):
        config = PipelineConfig.from_env({"TEXTSWAP_MAX_WORKERS": "8"}, max_workers=2)
        assert config.max_workers == 2

    def test_unparseable_value(self):
        with pytest.raises(ConfigurationError, match="TEXTSWAP_MAX_WORKERS"):
            PipelineConfig.from_env({"TEXTSWAP_MAX_WORKERS": "many"})

    def test_empty_environment_gives_defaults(self):
        assert PipelineConfig.from_env({}) == PipelineConfig()
