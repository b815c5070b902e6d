"""
Text region detection module
"""

from .base import RegionDetector
from .classical_detector import ClassicalDetector
from .reading_order import group_rows, sort_reading_order

__all__ = [
    "RegionDetector",
    "ClassicalDetector",
    "group_rows",
    "sort_reading_order",
]
