"""
textswap: In-place text replacement pipeline

Finds text in images, recognizes it with confidence-based multi-engine
routing, and keeps a deterministic history of replacements.

Detection:
- Classical OpenCV detection, reading-order sorted

Recognition (confidence-based):
- Local engine (Tesseract) first, multi-pass over preprocessing variants
- Cloud vision engine when local confidence < 60%
- Fails closed: no empty text is ever returned as success

Editing:
- Last-write-wins supersession of overlapping edits
"""

from .cancellation import CancellationToken
from .config import PipelineConfig
from .editing import EditHistory
from .exceptions import (
    BufferReleasedError,
    ConfigurationError,
    EngineError,
    EngineTimeout,
    EngineUnavailable,
    InvalidRegion,
    NoTextFound,
    OperationCancelled,
    RecognitionFailure,
    RecognitionUnavailable,
    ResourceExhausted,
    TextSwapError,
)
from .models import (
    Alignment,
    Attempt,
    DecisionFlag,
    Edit,
    EngineClass,
    RecognitionResult,
    Region,
    RotationPolicy,
    RoutingBranch,
    RoutingDecision,
    RoutingPolicy,
    TextStyle,
    TokenBox,
)
from .pipeline import BatchResult, RegionOutcome, TextReplacementPipeline

__version__ = "1.0.0"

__all__ = [
    "TextReplacementPipeline",
    "BatchResult",
    "RegionOutcome",
    "PipelineConfig",
    "CancellationToken",
    "EditHistory",
    # Models
    "Alignment",
    "Attempt",
    "DecisionFlag",
    "Edit",
    "EngineClass",
    "RecognitionResult",
    "Region",
    "RotationPolicy",
    "RoutingBranch",
    "RoutingDecision",
    "RoutingPolicy",
    "TextStyle",
    "TokenBox",
    # Exceptions
    "TextSwapError",
    "ConfigurationError",
    "InvalidRegion",
    "BufferReleasedError",
    "ResourceExhausted",
    "OperationCancelled",
    "EngineError",
    "EngineTimeout",
    "EngineUnavailable",
    "RecognitionFailure",
    "RecognitionUnavailable",
    "NoTextFound",
]
