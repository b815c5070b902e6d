"""
Classical Text Detection

Computer vision-based text region detection using OpenCV.
No deep learning - pure classical CV techniques.

Strategies (results merged by non-maximum suppression, earlier strategies
take precedence):
1. Morphology: Otsu binarization + horizontal closing joins glyphs into
   words/lines, external contours give the boxes
2. Contours: Canny edges dilated into blobs
3. Projection profiles (optional): row/column ink histograms, for tables
   and forms
"""

from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..config import PipelineConfig
from .base import Box, RegionDetector


class ClassicalDetector(RegionDetector):
    """
    Classical computer vision text detection

    Optimized for:
    - Screenshots, slides, scanned pages
    - High-contrast text on flat backgrounds
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        line_kernel_size: Tuple[int, int] = (15, 3),
        iou_threshold: float = 0.5,
        containment_threshold: float = 0.9,
        use_edges: bool = True,
        use_projection: bool = False,
    ):
        """
        Initialize classical detector

        Args:
            config: Pipeline configuration (area policy, row tolerance)
            line_kernel_size: Closing kernel (w, h) joining glyphs into lines
            iou_threshold: IoU above which a later box is suppressed
            containment_threshold: Fraction of a box inside a kept box above
                which it is suppressed
            use_edges: Also run the Canny edge strategy
            use_projection: Also run projection profiles (tables/forms)
        """
        super().__init__(config)
        self.line_kernel_size = line_kernel_size
        self.iou_threshold = iou_threshold
        self.containment_threshold = containment_threshold
        self.use_edges = use_edges
        self.use_projection = use_projection

    def _find_boxes(self, pixels: np.ndarray) -> List[Box]:
        gray = self._to_gray(pixels)

        boxes = self._detect_by_morphology(gray)
        if self.use_edges:
            boxes += self._detect_by_contours(gray)
        if self.use_projection:
            boxes += self._detect_by_projection(gray)

        return self._merge_overlapping_boxes(boxes)

    @staticmethod
    def _to_gray(pixels: np.ndarray) -> np.ndarray:
        if pixels.ndim == 2:
            return pixels
        if pixels.shape[2] == 1:
            return pixels[:, :, 0]
        if pixels.shape[2] == 4:
            return cv2.cvtColor(pixels, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(pixels, cv2.COLOR_BGR2GRAY)

    def _binarize(self, gray: np.ndarray) -> np.ndarray:
        """Otsu binarization with ink as foreground (255)"""
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
        # Light text on a dark background: the "ink" class is the majority
        if np.count_nonzero(binary) > binary.size / 2:
            binary = cv2.bitwise_not(binary)
        return binary

    def _detect_by_morphology(self, gray: np.ndarray) -> List[Box]:
        """
        Join neighbouring glyphs with a horizontal closing

        Works well for lines of text with regular letter spacing
        """
        binary = self._binarize(gray)
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, self.line_kernel_size)
        closed = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)

        contours, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        return [tuple(int(v) for v in cv2.boundingRect(c)) for c in contours]

    def _detect_by_contours(self, gray: np.ndarray) -> List[Box]:
        """
        Detect text regions using edge contours

        Works well for text with clear boundaries on textured backgrounds
        """
        edges = cv2.Canny(gray, 50, 150)

        # Dilate edges to connect nearby components
        kernel = np.ones((3, 3), np.uint8)
        dilated = cv2.dilate(edges, kernel, iterations=2)

        contours, _ = cv2.findContours(dilated, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        return [tuple(int(v) for v in cv2.boundingRect(c)) for c in contours]

    def _detect_by_projection(self, gray: np.ndarray) -> List[Box]:
        """
        Detect text regions using projection profiles

        Works well for tables and forms with clear row/column structure
        """
        binary = self._binarize(gray)

        h_projection = np.sum(binary, axis=1)
        v_projection = np.sum(binary, axis=0)
        if not h_projection.any() or not v_projection.any():
            return []

        h_regions = self._runs_above(h_projection, np.max(h_projection) * 0.1)
        v_regions = self._runs_above(v_projection, np.max(v_projection) * 0.1)

        boxes = []
        for y_start, y_end in h_regions:
            for x_start, x_end in v_regions:
                boxes.append((x_start, y_start, x_end - x_start, y_end - y_start))
        return boxes

    @staticmethod
    def _runs_above(profile: np.ndarray, threshold: float) -> List[Tuple[int, int]]:
        runs = []
        start = None
        for i, val in enumerate(profile):
            if start is None and val > threshold:
                start = i
            elif start is not None and val <= threshold:
                runs.append((start, i))
                start = None
        if start is not None:
            runs.append((start, len(profile)))
        return runs

    def _merge_overlapping_boxes(self, boxes: List[Box]) -> List[Box]:
        """
        Greedy non-maximum suppression in strategy order

        A box is dropped when its IoU with an already kept box exceeds
        iou_threshold, or when most of it lies inside a larger kept box.
        """
        kept: List[Box] = []
        for box in boxes:
            x, y, w, h = box
            if w <= 0 or h <= 0:
                continue
            area = w * h
            suppressed = False
            for kx, ky, kw, kh in kept:
                ix = max(0, min(x + w, kx + kw) - max(x, kx))
                iy = max(0, min(y + h, ky + kh) - max(y, ky))
                overlap = ix * iy
                if overlap == 0:
                    continue
                iou = overlap / float(area + kw * kh - overlap)
                if iou > self.iou_threshold:
                    suppressed = True
                    break
                if kw * kh >= area and overlap / float(area) >= self.containment_threshold:
                    suppressed = True
                    break
            if not suppressed:
                kept.append(box)
        return kept
