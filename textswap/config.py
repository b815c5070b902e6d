"""
Pipeline Configuration

All options have defaults; construct a PipelineConfig only to override them.

Example:
    >>> config = PipelineConfig(routing_policy="local-only", max_upscale_factor=3.0)
    >>> config = PipelineConfig.from_env()  # TEXTSWAP_* overrides
"""

import os
from dataclasses import dataclass, fields
from typing import Dict, Optional, Tuple

from .exceptions import ConfigurationError
from .models import EngineClass, RotationPolicy, RoutingPolicy

ENV_PREFIX = "TEXTSWAP_"

INVERT_MODES = ("auto", "always", "never")


@dataclass
class PipelineConfig:
    """
    Recognized options for detection, preprocessing, routing and batching

    Sizes are (width, height) tuples in source pixels. Timeouts are in
    milliseconds.
    """

    # Routing
    routing_policy: RoutingPolicy = RoutingPolicy.BALANCED
    confidence_accept_threshold: float = 60.0
    min_text_length: int = 2

    # Region bounds
    min_region_size: Tuple[int, int] = (8, 8)
    max_region_size: Tuple[int, int] = (4000, 4000)
    auto_resize: bool = False  # downscale oversized regions instead of rejecting

    # Preprocessing
    min_working_size: Tuple[int, int] = (100, 32)
    max_upscale_factor: float = 4.0
    invert_variant: str = "auto"  # auto | always | never

    # Rotation
    rotation_policy: RotationPolicy = RotationPolicy.CLAMP
    max_rotation_degrees: float = 45.0

    # Engines
    local_engine_timeout_ms: int = 30000
    cloud_engine_timeout_ms: int = 8000
    language_hint: str = "eng"

    # Detection
    row_tolerance_px: int = 20
    min_detection_area_ratio: float = 0.0002
    max_detection_area_ratio: float = 0.8

    # Batch execution
    max_workers: int = 4
    batch_timeout_ms: Optional[int] = None

    # Buffers
    max_buffer_pixels: int = 50_000_000

    def __post_init__(self):
        """Coerce enum strings and validate ranges"""
        self.routing_policy = _coerce_enum(RoutingPolicy, self.routing_policy, "routing_policy")
        self.rotation_policy = _coerce_enum(RotationPolicy, self.rotation_policy, "rotation_policy")
        self.min_region_size = _coerce_size(self.min_region_size, "min_region_size")
        self.max_region_size = _coerce_size(self.max_region_size, "max_region_size")
        self.min_working_size = _coerce_size(self.min_working_size, "min_working_size")

        if not 0.0 <= self.confidence_accept_threshold <= 100.0:
            raise ConfigurationError(
                f"confidence_accept_threshold must be between 0 and 100, "
                f"got {self.confidence_accept_threshold}"
            )
        if self.min_text_length < 1:
            raise ConfigurationError(f"min_text_length must be >= 1, got {self.min_text_length}")
        if (self.min_region_size[0] > self.max_region_size[0]
                or self.min_region_size[1] > self.max_region_size[1]):
            raise ConfigurationError(
                f"min_region_size {self.min_region_size} exceeds max_region_size {self.max_region_size}"
            )
        if self.max_upscale_factor < 1.0:
            raise ConfigurationError(
                f"max_upscale_factor must be >= 1.0, got {self.max_upscale_factor}"
            )
        if self.invert_variant not in INVERT_MODES:
            raise ConfigurationError(
                f"invert_variant must be one of {INVERT_MODES}, got {self.invert_variant!r}"
            )
        if not 0.0 <= self.max_rotation_degrees <= 180.0:
            raise ConfigurationError(
                f"max_rotation_degrees must be within 0..180, got {self.max_rotation_degrees}"
            )
        for name in ("local_engine_timeout_ms", "cloud_engine_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.batch_timeout_ms is not None and self.batch_timeout_ms <= 0:
            raise ConfigurationError(f"batch_timeout_ms must be positive, got {self.batch_timeout_ms}")
        if self.row_tolerance_px < 0:
            raise ConfigurationError(f"row_tolerance_px must be >= 0, got {self.row_tolerance_px}")
        if not 0.0 <= self.min_detection_area_ratio < self.max_detection_area_ratio <= 1.0:
            raise ConfigurationError(
                "detection area ratios must satisfy 0 <= min < max <= 1, got "
                f"{self.min_detection_area_ratio}, {self.max_detection_area_ratio}"
            )
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.max_buffer_pixels < 1:
            raise ConfigurationError(f"max_buffer_pixels must be >= 1, got {self.max_buffer_pixels}")

    def engine_timeout(self, engine_class: EngineClass) -> float:
        """Timeout in seconds for one engine invocation of the given class"""
        if engine_class is EngineClass.CLOUD:
            return self.cloud_engine_timeout_ms / 1000.0
        return self.local_engine_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides) -> "PipelineConfig":
        """
        Build a config from TEXTSWAP_* environment variables

        Size options take "WxH" (e.g. TEXTSWAP_MIN_REGION_SIZE=8x8).
        Explicit keyword overrides win over the environment.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _parse_env_value(f.name, raw)
        values.update(overrides)
        return cls(**values)


def _coerce_enum(enum_cls, value, name):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = tuple(m.value for m in enum_cls)
        raise ConfigurationError(f"{name} must be one of {valid}, got {value!r}") from None


def _coerce_size(value, name) -> Tuple[int, int]:
    try:
        w, h = value
        size = (int(w), int(h))
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a (width, height) pair, got {value!r}") from None
    if size[0] < 1 or size[1] < 1:
        raise ConfigurationError(f"{name} must be positive, got {size}")
    return size


_BOOL_FIELDS = {"auto_resize"}
_FLOAT_FIELDS = {
    "confidence_accept_threshold",
    "max_upscale_factor",
    "max_rotation_degrees",
    "min_detection_area_ratio",
    "max_detection_area_ratio",
}
_INT_FIELDS = {
    "min_text_length",
    "local_engine_timeout_ms",
    "cloud_engine_timeout_ms",
    "row_tolerance_px",
    "max_workers",
    "batch_timeout_ms",
    "max_buffer_pixels",
}
_SIZE_FIELDS = {"min_region_size", "max_region_size", "min_working_size"}


def _parse_env_value(name: str, raw: str):
    raw = raw.strip()
    try:
        if name in _BOOL_FIELDS:
            return raw.lower() in ("1", "true", "yes", "on")
        if name in _FLOAT_FIELDS:
            return float(raw)
        if name in _INT_FIELDS:
            return int(raw)
        if name in _SIZE_FIELDS:
            w, h = raw.lower().split("x")
            return (int(w), int(h))
    except ValueError:
        raise ConfigurationError(f"Cannot parse {ENV_PREFIX}{name.upper()}={raw!r}") from None
    return raw
