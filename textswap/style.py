"""
Text Style Estimation

Estimates the visual context a replacement should reproduce:
- background and text colour (Otsu split of the crop into two classes)
- font size (median token height, or the height of the ink band)
- alignment (balance of left/right ink margins)
"""

import logging
from typing import Sequence, Tuple

import cv2
import numpy as np

from .models import Alignment, Region, TextStyle, TokenBox

logger = logging.getLogger(__name__)

# Margin difference (fraction of width) still treated as centered
CENTER_TOLERANCE = 0.1


class StyleEstimator:
    """Heuristic style estimation from the original crop"""

    def __init__(self, center_tolerance: float = CENTER_TOLERANCE):
        self.center_tolerance = center_tolerance

    def estimate(
        self,
        crop: np.ndarray,
        region: Region,
        token_boxes: Sequence[TokenBox] = (),
    ) -> TextStyle:
        """
        Estimate style for one region

        Args:
            crop: Original region pixels (gray, BGR or BGRA)
            region: Source region of the crop
            token_boxes: Recognized tokens in source coordinates

        Returns:
            TextStyle with RGB colours
        """
        gray = self._to_gray(crop)
        ink = self._ink_mask(gray)

        background = self._mean_rgb(crop, ~ink)
        if ink.any():
            color = self._mean_rgb(crop, ink)
        else:
            color = background

        font_size = self._font_size(ink, region, token_boxes)
        alignment = self._alignment(ink)

        return TextStyle(
            font_size_estimate=font_size,
            color_estimate=color,
            background_estimate=background,
            alignment=alignment,
        )

    @staticmethod
    def _to_gray(crop: np.ndarray) -> np.ndarray:
        if crop.ndim == 2:
            return crop
        if crop.shape[2] == 1:
            return crop[:, :, 0]
        if crop.shape[2] == 4:
            return cv2.cvtColor(crop, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY)

    @staticmethod
    def _ink_mask(gray: np.ndarray) -> np.ndarray:
        """Boolean mask of the minority (text) class"""
        if int(gray.max()) == int(gray.min()):
            return np.zeros(gray.shape, dtype=bool)
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        bright = binary > 0
        # Text is the class covering fewer pixels
        return ~bright if bright.sum() >= bright.size / 2 else bright

    @staticmethod
    def _mean_rgb(crop: np.ndarray, mask: np.ndarray) -> Tuple[int, int, int]:
        if not mask.any():
            mask = np.ones(mask.shape, dtype=bool)
        if crop.ndim == 2 or crop.shape[2] == 1:
            level = int(round(float(np.mean(crop.reshape(mask.shape)[mask]))))
            return (level, level, level)
        b, g, r = (int(round(float(np.mean(crop[:, :, c][mask])))) for c in range(3))
        return (r, g, b)

    @staticmethod
    def _font_size(ink: np.ndarray, region: Region, token_boxes: Sequence[TokenBox]) -> float:
        heights = [t.bounds.h for t in token_boxes]
        if heights:
            return float(np.median(heights))
        rows = np.flatnonzero(ink.any(axis=1))
        if rows.size == 0:
            return float(region.h)
        # Ink band height in crop pixels, crop pixels == source pixels
        return float(rows[-1] - rows[0] + 1)

    def _alignment(self, ink: np.ndarray) -> Alignment:
        cols = np.flatnonzero(ink.any(axis=0))
        if cols.size == 0:
            return Alignment.LEFT
        width = ink.shape[1]
        left_margin = int(cols[0])
        right_margin = int(width - 1 - cols[-1])
        if abs(left_margin - right_margin) <= self.center_tolerance * width:
            return Alignment.CENTER
        return Alignment.LEFT if left_margin < right_margin else Alignment.RIGHT
