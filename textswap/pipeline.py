"""
Text Replacement Pipeline

Caller-facing entry point tying the stages together:

1. Region detection (or a caller-supplied region)
2. Region validation (size bounds, rotation policy)
3. Scoped crop + preprocessing into variants
4. Multi-pass, confidence-routed recognition
5. Edit proposal (snapshot + style estimate) and commit

recognize_batch() runs one independent pipeline per region in a thread
pool. Failures stay local to their region; cancellation reaches every
running region and each releases its buffers before the batch returns.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence, Tuple, Union

import numpy as np

from .cancellation import CancellationToken
from .config import PipelineConfig
from .detection import ClassicalDetector, RegionDetector
from .editing import EditHistory
from .exceptions import InvalidRegion, OperationCancelled, TextSwapError
from .imaging.buffers import BufferLedger, BufferScope, SourceImage
from .imaging.preprocessing import PreprocessingPipeline
from .models import (
    DecisionFlag,
    Edit,
    Region,
    RotationPolicy,
    RoutingDecision,
    RoutingPolicy,
    TextStyle,
)
from .recognition.base import OCREngine
from .recognition.router import RecognitionRouter
from .style import StyleEstimator

logger = logging.getLogger(__name__)

ImageInput = Union[SourceImage, np.ndarray]

_WAIT_SLICE_S = 0.05


@dataclass
class RegionOutcome:
    """Result of one region in a batch: a decision or a contained error"""
    region: Region
    decision: Optional[RoutingDecision] = None
    error: Optional[TextSwapError] = None

    @property
    def succeeded(self) -> bool:
        return self.decision is not None


@dataclass
class BatchResult:
    """Per-region outcomes in input (reading) order"""
    outcomes: List[RegionOutcome] = field(default_factory=list)
    cancelled: bool = False
    elapsed_ms: float = 0.0

    @property
    def decisions(self) -> List[RoutingDecision]:
        return [o.decision for o in self.outcomes if o.decision is not None]

    @property
    def failures(self) -> List[RegionOutcome]:
        return [o for o in self.outcomes if o.error is not None]


class TextReplacementPipeline:
    """
    Detect, recognize and edit text regions of one image

    Example:
        >>> pipeline = TextReplacementPipeline(
        ...     local_engines=[TesseractEngine()],
        ...     cloud_engines=[VisionEngine()],
        ... )
        >>> regions = pipeline.detect_regions(image)
        >>> decision = pipeline.recognize(image, regions[0])
        >>> edit = pipeline.propose_edit(image, decision, "New text")
        >>> pipeline.commit_edit(edit)
    """

    def __init__(
        self,
        local_engines: Optional[Sequence[OCREngine]] = None,
        cloud_engines: Optional[Sequence[OCREngine]] = None,
        config: Optional[PipelineConfig] = None,
        detector: Optional[RegionDetector] = None,
        history: Optional[EditHistory] = None,
        ledger: Optional[BufferLedger] = None,
    ):
        self.config = config or PipelineConfig()
        self.detector = detector or ClassicalDetector(self.config)
        self.preprocessor = PreprocessingPipeline(self.config)
        self.router = RecognitionRouter(local_engines, cloud_engines, self.config)
        self.history = history or EditHistory()
        self.ledger = ledger or BufferLedger()
        self.style_estimator = StyleEstimator()

    # ------------------------------------------------------------------
    # Detection and validation
    # ------------------------------------------------------------------

    def detect_regions(self, image: ImageInput) -> List[Region]:
        """Candidate text regions in reading order"""
        return self.detector.detect(SourceImage.wrap(image))

    def validate_region(
        self, source: SourceImage, region: Region
    ) -> Tuple[Region, FrozenSet[DecisionFlag]]:
        """
        Apply size bounds and rotation policy

        Returns:
            (effective region, flags raised by validation)

        Raises:
            InvalidRegion: outside the image, below min_region_size, above
                max_region_size (unless auto_resize), or over-rotated
                under the reject policy
        """
        config = self.config
        flags = set()

        if not source.contains(region):
            raise InvalidRegion(
                f"Region {region.as_tuple()} exceeds source bounds {source.width}x{source.height}",
                region=region,
            )
        min_w, min_h = config.min_region_size
        if region.w < min_w or region.h < min_h:
            raise InvalidRegion(
                f"Region {region.w}x{region.h} is below the minimum size {min_w}x{min_h}",
                region=region,
            )
        max_w, max_h = config.max_region_size
        if (region.w > max_w or region.h > max_h) and not config.auto_resize:
            raise InvalidRegion(
                f"Region {region.w}x{region.h} exceeds the maximum size {max_w}x{max_h}",
                region=region,
            )

        limit = config.max_rotation_degrees
        rotation = region.rotation_degrees
        if abs(rotation) > limit:
            if config.rotation_policy is RotationPolicy.REJECT:
                raise InvalidRegion(
                    f"Region rotation {rotation} exceeds +/-{limit} degrees", region=region
                )
            if config.rotation_policy is RotationPolicy.CLAMP:
                clamped = limit if rotation > 0 else -limit
                logger.info("Clamping rotation %.1f to %.1f for region %s", rotation, clamped, region.as_tuple())
                region = region.with_rotation(clamped)
                flags.add(DecisionFlag.ROTATION_CLAMPED)

        return region, frozenset(flags)

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    def recognize(
        self,
        image: ImageInput,
        region: Region,
        policy: Optional[Union[RoutingPolicy, str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> RoutingDecision:
        """
        Recognize the text of one region

        Every buffer acquired for the region is released before this
        returns or raises.

        Raises:
            InvalidRegion, ResourceExhausted, EngineUnavailable,
            RecognitionUnavailable, NoTextFound, OperationCancelled
        """
        source = SourceImage.wrap(image)
        region, flags = self.validate_region(source, region)

        with BufferScope(self.ledger, self.config.max_buffer_pixels) as scope:
            if cancel is not None:
                cancel.raise_if_cancelled("crop")
            crop = scope.acquire(source, region)

            if cancel is not None:
                cancel.raise_if_cancelled("preprocessing")
            prepared = self.preprocessor.run(crop, scope, region)

            if cancel is not None:
                cancel.raise_if_cancelled("recognition")
            return self.router.route(
                prepared.variants,
                region=region,
                policy=policy,
                flags=flags | prepared.flags,
                cancel=cancel,
            )

    def recognize_batch(
        self,
        image: ImageInput,
        regions: Optional[Sequence[Region]] = None,
        policy: Optional[Union[RoutingPolicy, str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """
        Recognize many regions concurrently

        Args:
            image: Source image, shared read-only by all workers
            regions: Regions to recognize; detected when omitted
            policy: Routing policy override
            cancel: Caller token; cancelling it stops the whole batch

        Returns:
            BatchResult with one outcome per region. Cancelled or timed
            out regions carry an OperationCancelled error.
        """
        start = time.perf_counter()
        source = SourceImage.wrap(image)
        if regions is None:
            regions = self.detect_regions(source)
        regions = list(regions)
        if not regions:
            return BatchResult()

        token = CancellationToken(parent=cancel)
        deadline = None
        if self.config.batch_timeout_ms is not None:
            deadline = time.monotonic() + self.config.batch_timeout_ms / 1000.0

        outcomes = [RegionOutcome(region=r) for r in regions]
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.max_workers, len(regions)),
            thread_name_prefix="region",
        )
        futures: List[Future] = []
        try:
            for region in regions:
                futures.append(executor.submit(self.recognize, source, region, policy, token))

            pending = set(futures)
            while pending:
                if token.cancelled:
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning("Batch timeout reached, cancelling %d regions", len(pending))
                    token.cancel()
                    break
                _, pending = wait(pending, timeout=_WAIT_SLICE_S, return_when=FIRST_COMPLETED)
        finally:
            if token.cancelled:
                for future in futures:
                    future.cancel()
            # Running workers see the token and unwind, releasing their buffers
            executor.shutdown(wait=True)

        for outcome, future in zip(outcomes, futures):
            if future.cancelled():
                outcome.error = OperationCancelled(
                    f"region {outcome.region.as_tuple()} cancelled before start", region=outcome.region
                )
                continue
            try:
                outcome.decision = future.result()
            except OperationCancelled as exc:
                exc.region = outcome.region
                outcome.error = exc
            except TextSwapError as exc:
                logger.info("Region %s failed: %s", outcome.region.as_tuple(), exc)
                outcome.error = exc

        result = BatchResult(
            outcomes=outcomes,
            cancelled=token.cancelled,
            elapsed_ms=(time.perf_counter() - start) * 1000.0,
        )
        logger.info(
            "Batch finished: %d regions, %d recognized, %d failed%s",
            len(outcomes), len(result.decisions), len(result.failures),
            " (cancelled)" if result.cancelled else "",
        )
        return result

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def propose_edit(
        self,
        image: ImageInput,
        target: Union[RoutingDecision, Region],
        replacement_text: Optional[str] = None,
        style: Optional[TextStyle] = None,
        confirmed: bool = False,
    ) -> Edit:
        """
        Build an edit for a recognized (or directly selected) region

        Args:
            image: Source image, used for the snapshot and style estimate
            target: Accepted RoutingDecision, or a Region for manual edits
            replacement_text: New text; defaults to the recognized text
            style: Explicit style; estimated from the crop when omitted
            confirmed: Required for decisions that were not accepted
                (rejected-low-confidence)
        """
        token_boxes = ()
        if isinstance(target, RoutingDecision):
            if not target.accepted and not confirmed:
                raise ValueError(
                    f"Decision for region {target.region.as_tuple() if target.region else None} "
                    f"was not accepted ({target.branch.value}); pass confirmed=True after user review"
                )
            region = target.region
            token_boxes = target.result.token_boxes
            if replacement_text is None:
                replacement_text = target.text
        else:
            region = target
        if region is None:
            raise ValueError("Edit target has no region")
        if replacement_text is None:
            raise ValueError("replacement_text is required for manual edits")

        source = SourceImage.wrap(image)
        with BufferScope(self.ledger, self.config.max_buffer_pixels) as scope:
            crop = scope.acquire(source, region, label="snapshot")
            snapshot = crop.pixels.copy()

        if style is None:
            style = self.style_estimator.estimate(snapshot, region, token_boxes)

        return self.history.propose(region, replacement_text, style, original_snapshot=snapshot)

    def commit_edit(self, edit: Edit) -> List[Edit]:
        """Commit an edit; returns the edits it superseded"""
        return self.history.commit(edit)

    def active_edits(self) -> List[Edit]:
        return self.history.active_edits()
