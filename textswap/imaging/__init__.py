"""
Image buffers and preprocessing
"""

from .buffers import BufferLedger, BufferScope, ImageBuffer, SourceImage, acquire
from .preprocessing import (
    BINARIZED,
    ENHANCED,
    INVERTED,
    ORIGINAL,
    ImageVariant,
    PreprocessingPipeline,
    PreprocessingResult,
    plan_scale,
    required_upscale,
)

__all__ = [
    "BufferLedger",
    "BufferScope",
    "ImageBuffer",
    "SourceImage",
    "acquire",
    "ImageVariant",
    "PreprocessingPipeline",
    "PreprocessingResult",
    "plan_scale",
    "required_upscale",
    "ORIGINAL",
    "ENHANCED",
    "BINARIZED",
    "INVERTED",
]
