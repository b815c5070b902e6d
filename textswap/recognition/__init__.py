"""
Text Recognition Module

Engine contract, Tesseract/vision engines and confidence-based routing
"""

from .base import EngineOutput, OCREngine, RawToken
from .router import RecognitionRouter, rank_attempts
from .tesseract_ocr import TesseractEngine
from .vision_ocr import VisionEngine

__all__ = [
    "EngineOutput",
    "OCREngine",
    "RawToken",
    "RecognitionRouter",
    "rank_attempts",
    "TesseractEngine",
    "VisionEngine",
]
