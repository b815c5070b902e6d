"""
Preprocessing Pipeline

Turns one cropped region into a set of candidate variants for multi-pass
recognition. Stages run sequentially, each a deterministic OpenCV
operation over the previous stage's pixels:

1. deskew     - rotate tilted text back to horizontal
2. rescale    - upscale small crops to a minimum working size (capped)
3. original   - the rescaled crop, least processed variant
4. enhanced   - denoise + CLAHE contrast + unsharp sharpening
5. binarized  - adaptive Gaussian threshold of the enhanced image
6. inverted   - colour inversion for light-on-dark text (optional)

A failing stage does not fail the run: dependent stages are skipped, the
result is marked degraded, and the original crop is always returned.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Set, Tuple

import cv2
import numpy as np

from ..config import PipelineConfig
from ..models import DecisionFlag, Region
from .buffers import BufferScope, ImageBuffer

logger = logging.getLogger(__name__)

ORIGINAL = "original"
ENHANCED = "enhanced"
BINARIZED = "binarized"
INVERTED = "inverted"

# Mean gray level below which a crop is treated as light text on dark
DARK_BACKGROUND_LEVEL = 110

STAGE_ERRORS = (cv2.error, ValueError)


@dataclass
class ImageVariant:
    """A derived pixel buffer tagged with its producing stage and region"""
    name: str
    stage: str
    region: Region
    buffer: ImageBuffer
    scale: float = 1.0  # variant pixels per source pixel

    @property
    def pixels(self) -> np.ndarray:
        return self.buffer.pixels

    def release(self) -> None:
        self.buffer.release()

    def to_source_box(self, box: Tuple[int, int, int, int]) -> Region:
        """Map an (x, y, w, h) box in variant pixels into source coordinates"""
        x, y, w, h = box
        region = self.region
        sx = region.x + int(round(x / self.scale))
        sy = region.y + int(round(y / self.scale))
        sx = min(max(sx, region.x), region.right - 1)
        sy = min(max(sy, region.y), region.bottom - 1)
        sw = max(1, int(round(w / self.scale)))
        sh = max(1, int(round(h / self.scale)))
        sw = min(sw, region.right - sx)
        sh = min(sh, region.bottom - sy)
        return Region(sx, sy, sw, sh)


@dataclass
class PreprocessingResult:
    """Variants of one run plus the flags describing how they were made"""
    variants: List[ImageVariant]
    flags: FrozenSet[DecisionFlag] = frozenset()
    failed_stages: List[str] = field(default_factory=list)
    required_scale: float = 1.0
    applied_scale: float = 1.0

    @property
    def degraded(self) -> bool:
        return bool(self.failed_stages)

    @property
    def names(self) -> List[str]:
        return [v.name for v in self.variants]

    def variant(self, name: str) -> Optional[ImageVariant]:
        for v in self.variants:
            if v.name == name:
                return v
        return None

    def release(self) -> None:
        for v in self.variants:
            v.release()


@dataclass(frozen=True)
class ScalePlan:
    required: float
    applied: float
    capped: bool


def required_upscale(width: int, height: int, min_size: Tuple[int, int]) -> float:
    """Factor needed for both dimensions to reach min_size (>= 1.0)"""
    min_w, min_h = min_size
    return max(min_w / float(width), min_h / float(height), 1.0)


def plan_scale(width: int, height: int, config: PipelineConfig) -> ScalePlan:
    """
    Decide the rescale factor for a crop

    Small crops are upscaled toward min_working_size but never beyond
    max_upscale_factor; exceeding the cap is reported via capped=True.
    Oversized crops are only downscaled when auto_resize is enabled.
    """
    max_w, max_h = config.max_region_size
    if config.auto_resize and (width > max_w or height > max_h):
        factor = min(max_w / float(width), max_h / float(height))
        return ScalePlan(required=factor, applied=factor, capped=False)

    required = required_upscale(width, height, config.min_working_size)
    applied = min(required, config.max_upscale_factor)
    return ScalePlan(required=required, applied=applied, capped=required > config.max_upscale_factor)


class PreprocessingPipeline:
    """
    Deterministic enhancement stages producing recognition variants

    Intermediate buffers (deskewed, rescaled, gray, denoised) belong to
    the run and are released before it returns or raises. Variants are
    adopted into the caller's scope and live until that scope closes.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.clahe_clip_limit = 2.0
        self.clahe_tile_grid = (8, 8)
        self.denoise_strength = 10

    def run(
        self,
        buffer: ImageBuffer,
        scope: BufferScope,
        region: Optional[Region] = None,
    ) -> PreprocessingResult:
        """
        Produce variants for one cropped region

        Args:
            buffer: Cropped region pixels
            scope: Scope that will own the returned variants
            region: Source region (defaults to buffer.region)

        Returns:
            PreprocessingResult, original variant always first
        """
        region = region or buffer.region
        if region is None:
            raise ValueError("Preprocessing needs the source region of the buffer")

        flags: Set[DecisionFlag] = set()
        failed: List[str] = []

        with BufferScope(scope.ledger, scope.max_pixels) as work:
            working = buffer.pixels

            if region.rotation_degrees:
                deskewed = self._try_stage(
                    "deskew", failed, self._deskew, working, region.rotation_degrees
                )
                if deskewed is not None:
                    working = work.adopt(deskewed, "deskewed", region).pixels

            height, width = working.shape[:2]
            plan = plan_scale(width, height, self.config)
            if plan.capped:
                flags.add(DecisionFlag.LOW_CONFIDENCE_UPSCALE)
                logger.warning(
                    "Region %s needs %.1fx upscale, capped at %.1fx",
                    region.as_tuple(), plan.required, plan.applied,
                )

            scale = 1.0
            stage = "crop"
            if plan.applied != 1.0:
                rescaled = self._try_stage("rescale", failed, self._rescale, working, plan.applied)
                if rescaled is not None:
                    working = work.adopt(rescaled, "rescaled", region).pixels
                    scale = plan.applied
                    stage = "upscale" if plan.applied > 1.0 else "downscale"

            variants = [self._variant(scope, ORIGINAL, stage, working.copy(), region, scale)]

            gray = self._try_stage("grayscale", failed, self._to_gray, working)
            enhanced = None
            if gray is not None:
                gray = work.adopt(gray, "gray", region).pixels
                denoised = self._try_stage("denoise", failed, self._denoise, gray)
                if denoised is not None:
                    denoised = work.adopt(denoised, "denoised", region).pixels
                    enhanced = self._try_stage("enhance", failed, self._enhance, denoised)

            if enhanced is not None:
                variants.append(self._variant(scope, ENHANCED, "enhance", enhanced, region, scale))

                binary = self._try_stage("binarize", failed, self._binarize, enhanced)
                if binary is not None:
                    variants.append(self._variant(scope, BINARIZED, "binarize", binary, region, scale))

                if self._should_invert(gray):
                    inverted = self._try_stage("invert", failed, self._invert, enhanced)
                    if inverted is not None:
                        variants.append(self._variant(scope, INVERTED, "invert", inverted, region, scale))

        if failed:
            flags.add(DecisionFlag.DEGRADED_PREPROCESSING)

        logger.debug(
            "Preprocessed region %s into %s (scale %.2f, failed stages: %s)",
            region.as_tuple(), [v.name for v in variants], scale, failed or "none",
        )
        return PreprocessingResult(
            variants=variants,
            flags=frozenset(flags),
            failed_stages=failed,
            required_scale=plan.required,
            applied_scale=scale,
        )

    def _try_stage(self, name: str, failed: List[str], fn: Callable, *args) -> Optional[np.ndarray]:
        try:
            return fn(*args)
        except STAGE_ERRORS as exc:
            logger.warning("Preprocessing stage %r failed: %s", name, exc)
            failed.append(name)
            return None

    @staticmethod
    def _variant(
        scope: BufferScope,
        name: str,
        stage: str,
        pixels: np.ndarray,
        region: Region,
        scale: float,
    ) -> ImageVariant:
        buffer = scope.adopt(pixels, f"variant:{name}", region)
        return ImageVariant(name=name, stage=stage, region=region, buffer=buffer, scale=scale)

    def _should_invert(self, gray: Optional[np.ndarray]) -> bool:
        mode = self.config.invert_variant
        if mode == "always":
            return True
        if mode == "never" or gray is None:
            return False
        return float(np.mean(gray)) < DARK_BACKGROUND_LEVEL

    def _deskew(self, pixels: np.ndarray, rotation_degrees: float) -> np.ndarray:
        """Rotate by -rotation_degrees on an expanded canvas"""
        height, width = pixels.shape[:2]
        center = (width / 2.0, height / 2.0)
        matrix = cv2.getRotationMatrix2D(center, -rotation_degrees, 1.0)
        cos = abs(matrix[0, 0])
        sin = abs(matrix[0, 1])
        new_w = max(1, int(round(height * sin + width * cos)))
        new_h = max(1, int(round(height * cos + width * sin)))
        matrix[0, 2] += new_w / 2.0 - center[0]
        matrix[1, 2] += new_h / 2.0 - center[1]
        return cv2.warpAffine(
            pixels, matrix, (new_w, new_h),
            flags=cv2.INTER_CUBIC,
            borderMode=cv2.BORDER_REPLICATE,
        )

    def _rescale(self, pixels: np.ndarray, factor: float) -> np.ndarray:
        height, width = pixels.shape[:2]
        new_w = max(1, int(round(width * factor)))
        new_h = max(1, int(round(height * factor)))
        interpolation = cv2.INTER_CUBIC if factor > 1.0 else cv2.INTER_AREA
        return cv2.resize(pixels, (new_w, new_h), interpolation=interpolation)

    def _to_gray(self, pixels: np.ndarray) -> np.ndarray:
        if pixels.ndim == 2:
            return pixels.copy()
        channels = pixels.shape[2]
        if channels == 1:
            return pixels[:, :, 0].copy()
        if channels == 4:
            return cv2.cvtColor(pixels, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(pixels, cv2.COLOR_BGR2GRAY)

    def _denoise(self, gray: np.ndarray) -> np.ndarray:
        return cv2.fastNlMeansDenoising(gray, h=self.denoise_strength)

    def _enhance(self, gray: np.ndarray) -> np.ndarray:
        """CLAHE contrast followed by unsharp masking"""
        clahe = cv2.createCLAHE(clipLimit=self.clahe_clip_limit, tileGridSize=self.clahe_tile_grid)
        contrasted = clahe.apply(gray)
        blurred = cv2.GaussianBlur(contrasted, (0, 0), 3)
        return cv2.addWeighted(contrasted, 1.5, blurred, -0.5, 0)

    def _binarize(self, gray: np.ndarray) -> np.ndarray:
        return cv2.adaptiveThreshold(
            gray,
            255,
            cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY,
            11,  # Block size
            2    # Constant subtracted from mean
        )

    def _invert(self, gray: np.ndarray) -> np.ndarray:
        return cv2.bitwise_not(gray)
