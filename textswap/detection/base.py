"""
Region detector contract

Detectors only locate candidate text-bearing rectangles; they never run
recognition. The base class applies the shared policy: clip to the image,
discard degenerate or whole-image detections, sort in reading order.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import PipelineConfig
from ..imaging.buffers import SourceImage
from ..models import Region
from .reading_order import sort_reading_order

logger = logging.getLogger(__name__)

Box = Tuple[int, int, int, int]


class RegionDetector(ABC):
    """Finds candidate text regions in a source image"""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def detect(self, image: Union[SourceImage, np.ndarray]) -> List[Region]:
        """
        Detect text regions in reading order

        Returns an empty list (not an error) when nothing is found.
        """
        source = SourceImage.wrap(image)
        boxes = self._find_boxes(source.pixels)
        regions = self.filter_regions(boxes, source)
        ordered = sort_reading_order(regions, self.config.row_tolerance_px)
        logger.debug(
            "%s: %d candidate boxes, %d regions after policy filter",
            type(self).__name__, len(boxes), len(ordered),
        )
        return ordered

    @abstractmethod
    def _find_boxes(self, pixels: np.ndarray) -> List[Box]:
        """Return raw (x, y, w, h) candidate boxes"""
        raise NotImplementedError

    def filter_regions(self, boxes: Sequence[Box], source: SourceImage) -> List[Region]:
        """
        Discard boxes outside the configured area policy

        Removes:
        - boxes smaller than min_region_size
        - boxes below min_detection_area_ratio of the image (noise)
        - boxes above max_detection_area_ratio of the image (whole page)
        """
        image_area = float(source.area)
        min_w, min_h = self.config.min_region_size
        min_area = self.config.min_detection_area_ratio * image_area
        max_area = self.config.max_detection_area_ratio * image_area

        regions: List[Region] = []
        seen = set()
        for x, y, w, h in boxes:
            x1 = max(0, int(x))
            y1 = max(0, int(y))
            x2 = min(source.width, int(x) + int(w))
            y2 = min(source.height, int(y) + int(h))
            cw, ch = x2 - x1, y2 - y1
            if cw < min_w or ch < min_h:
                continue
            area = cw * ch
            if area < min_area or area > max_area:
                continue
            key = (x1, y1, cw, ch)
            if key in seen:
                continue
            seen.add(key)
            regions.append(Region(x1, y1, cw, ch))
        return regions
