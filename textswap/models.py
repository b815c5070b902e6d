"""
Data Model

Geometry, recognition results, routing decisions and edits shared by every
stage of the pipeline. Everything handed across a stage boundary is
immutable; supersession of edits is tracked by EditHistory, not by mutating
Edit instances.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

import numpy as np

from .exceptions import InvalidRegion


class EngineClass(Enum):
    """Engine cost/latency class"""
    LOCAL = "local"  # free, on-device
    CLOUD = "cloud"  # paid, remote


class RoutingPolicy(Enum):
    """Strategy for choosing and escalating among engines"""
    LOCAL_ONLY = "local-only"
    CLOUD_ONLY = "cloud-only"
    BALANCED = "balanced"


class RoutingBranch(Enum):
    """Policy branch that selected the winning result"""
    LOCAL_HIGH_CONFIDENCE = "local-high-confidence"
    MULTI_PASS_BEST = "multi-pass-best"
    CLOUD_FALLBACK = "cloud-fallback"
    REJECTED_LOW_CONFIDENCE = "rejected-low-confidence"


class DecisionFlag(Enum):
    """Non-fatal warnings attached to a RoutingDecision"""
    LOW_CONFIDENCE = "low-confidence"
    LOW_CONFIDENCE_UPSCALE = "low-confidence-upscale"
    DEGRADED_PREPROCESSING = "degraded-preprocessing"
    ROTATION_CLAMPED = "rotation-clamped"


class RotationPolicy(Enum):
    """What to do with regions rotated beyond max_rotation_degrees"""
    CLAMP = "clamp"
    REJECT = "reject"
    AS_IS = "as-is"


class Alignment(Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class Region:
    """
    Axis-aligned rectangle in source-image pixel coordinates

    rotation_degrees describes the text baseline angle inside the
    rectangle (signed, -180..180). Overlap math ignores rotation.
    """
    x: int
    y: int
    w: int
    h: int
    rotation_degrees: float = 0.0

    def __post_init__(self):
        if self.w <= 0 or self.h <= 0:
            raise InvalidRegion(
                f"Region size must be positive, got {self.w}x{self.h}"
            )
        if not -180.0 <= self.rotation_degrees <= 180.0:
            raise InvalidRegion(
                f"rotation_degrees must be within -180..180, got {self.rotation_degrees}"
            )

    @classmethod
    def from_tuple(cls, box: Tuple[int, int, int, int], rotation_degrees: float = 0.0) -> "Region":
        x, y, w, h = box
        return cls(int(x), int(y), int(w), int(h), rotation_degrees)

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.w, self.h)

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    @property
    def area(self) -> int:
        return self.w * self.h

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.w / 2.0, self.y + self.h / 2.0)

    def intersection(self, other: "Region") -> Optional["Region"]:
        """Overlapping rectangle, or None when the overlap area is zero"""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.right, other.right)
        y2 = min(self.bottom, other.bottom)
        if x2 <= x1 or y2 <= y1:
            return None
        return Region(x1, y1, x2 - x1, y2 - y1)

    def overlap_area(self, other: "Region") -> int:
        inter = self.intersection(other)
        return inter.area if inter is not None else 0

    def overlaps(self, other: "Region") -> bool:
        return self.overlap_area(other) > 0

    def with_rotation(self, rotation_degrees: float) -> "Region":
        return Region(self.x, self.y, self.w, self.h, rotation_degrees)


@dataclass(frozen=True)
class TokenBox:
    """One recognized token and its bounds in source coordinates"""
    text: str
    bounds: Region
    confidence: Optional[float] = None


@dataclass(frozen=True)
class RecognitionResult:
    """Output of one engine on one variant"""
    text: str
    confidence: float  # 0-100
    token_boxes: Tuple[TokenBox, ...] = ()
    engine: str = ""
    variant: str = ""

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 100.0:
            raise ValueError(f"confidence must be within 0..100, got {self.confidence}")


@dataclass(frozen=True)
class Attempt:
    """One engine/variant pairing, successful or failed"""
    engine: str
    engine_class: EngineClass
    variant: str
    result: Optional[RecognitionResult] = None
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    @property
    def confidence(self) -> Optional[float]:
        return self.result.confidence if self.result is not None else None

    def to_dict(self) -> Dict:
        return {
            "engine": self.engine,
            "engine_class": self.engine_class.value,
            "variant": self.variant,
            "succeeded": self.succeeded,
            "confidence": self.confidence,
            "text": self.result.text if self.result is not None else None,
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


@dataclass(frozen=True)
class RoutingDecision:
    """
    Winning result plus the diagnostics of how it was chosen

    accepted is False only on the rejected-low-confidence branch; callers
    should confirm such text with the user before committing an edit.
    """
    result: RecognitionResult
    branch: RoutingBranch
    policy: RoutingPolicy
    region: Optional[Region] = None
    attempts: Tuple[Attempt, ...] = ()
    flags: FrozenSet[DecisionFlag] = frozenset()
    accepted: bool = True

    @property
    def text(self) -> str:
        return self.result.text

    @property
    def confidence(self) -> float:
        return self.result.confidence

    @property
    def low_confidence(self) -> bool:
        return DecisionFlag.LOW_CONFIDENCE in self.flags

    @property
    def engines_attempted(self) -> List[str]:
        seen: List[str] = []
        for attempt in self.attempts:
            if attempt.engine not in seen:
                seen.append(attempt.engine)
        return seen

    def to_dict(self) -> Dict:
        return {
            "text": self.result.text,
            "confidence": self.result.confidence,
            "engine": self.result.engine,
            "variant": self.result.variant,
            "branch": self.branch.value,
            "policy": self.policy.value,
            "accepted": self.accepted,
            "region": self.region.as_tuple() if self.region is not None else None,
            "flags": sorted(f.value for f in self.flags),
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass(frozen=True)
class TextStyle:
    """Visual context to reproduce when rendering the replacement"""
    font_size_estimate: float
    color_estimate: Tuple[int, int, int]  # RGB
    background_estimate: Tuple[int, int, int]  # RGB
    alignment: Alignment = Alignment.LEFT

    def to_dict(self) -> Dict:
        return {
            "font_size_estimate": self.font_size_estimate,
            "color_estimate": list(self.color_estimate),
            "background_estimate": list(self.background_estimate),
            "alignment": self.alignment.value,
        }


@dataclass(frozen=True, eq=False)
class Edit:
    """An accepted text replacement over one region"""
    id: str
    region: Region
    replacement_text: str
    style: TextStyle
    created_at: int  # logical sequence number
    original_snapshot: Optional[np.ndarray] = field(default=None, repr=False)
