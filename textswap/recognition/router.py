"""
Recognition Router

Confidence-based routing across engines and preprocessing variants.

Multi-pass fan-out:
    One engine runs concurrently on every variant (original, enhanced,
    binarized, inverted). Results are ranked by confidence, ties prefer
    the "enhanced" variant, then variant name. The top result is that
    engine's answer.

Routing policies:
    local-only  - local engine only, never escalate
    cloud-only  - cloud engine only
    balanced    - local first; accept at/above the threshold (default 60),
                  otherwise escalate to cloud and accept its answer
                  unconditionally (remote is authoritative)

Failed attempts (errors, timeouts) are recorded and excluded from
ranking. The router fails closed: RecognitionUnavailable when every
attempt of a required engine class failed, NoTextFound when the winning
text is empty or too short.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from ..cancellation import CancellationToken
from ..config import PipelineConfig
from ..exceptions import EngineError, EngineUnavailable, NoTextFound, RecognitionUnavailable
from ..imaging.preprocessing import ENHANCED, ImageVariant
from ..models import (
    Attempt,
    DecisionFlag,
    EngineClass,
    RecognitionResult,
    Region,
    RoutingBranch,
    RoutingDecision,
    RoutingPolicy,
)
from .base import OCREngine

logger = logging.getLogger(__name__)

# Poll interval while waiting on a fan-out, bounds cancellation latency
_WAIT_SLICE_S = 0.05


def rank_attempts(attempts: Iterable[Attempt]) -> List[Attempt]:
    """
    Successful attempts, best first

    Confidence descending; ties prefer the enhanced variant, then variant
    name, so equal confidences always resolve the same way.
    """
    successful = [a for a in attempts if a.result is not None]
    return sorted(
        successful,
        key=lambda a: (-a.result.confidence, 0 if a.variant == ENHANCED else 1, a.variant),
    )


class RecognitionRouter:
    """
    Orchestrates multi-pass recognition and engine escalation

    Engines of each class are tried in registration order; the first
    engine with at least one successful attempt answers for its class.
    """

    def __init__(
        self,
        local_engines: Optional[Sequence[OCREngine]] = None,
        cloud_engines: Optional[Sequence[OCREngine]] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.config = config or PipelineConfig()
        self.engines: Dict[EngineClass, List[OCREngine]] = {
            EngineClass.LOCAL: list(local_engines or []),
            EngineClass.CLOUD: list(cloud_engines or []),
        }

    def route(
        self,
        variants: Sequence[ImageVariant],
        region: Optional[Region] = None,
        policy: Optional[RoutingPolicy] = None,
        flags: FrozenSet[DecisionFlag] = frozenset(),
        cancel: Optional[CancellationToken] = None,
    ) -> RoutingDecision:
        """
        Pick the winning recognition result for one region

        Args:
            variants: Preprocessed variants of the region
            region: Source region (for diagnostics)
            policy: Routing policy, defaults to config.routing_policy
            flags: Flags inherited from earlier stages
            cancel: Cancellation token polled during fan-out

        Returns:
            RoutingDecision with the winner and every attempt made

        Raises:
            EngineUnavailable: no usable engine for a required class
            RecognitionUnavailable: all attempts of a required class failed
            NoTextFound: winning text empty or shorter than min_text_length
        """
        if not variants:
            raise ValueError("route() needs at least one variant")
        policy = RoutingPolicy(policy) if policy is not None else self.config.routing_policy
        if region is None:
            region = variants[0].region

        attempts: List[Attempt] = []

        if policy is RoutingPolicy.LOCAL_ONLY:
            winner = self._best_from(EngineClass.LOCAL, variants, attempts, region, policy, cancel)
            accepted = self._acceptable(winner)
            branch = RoutingBranch.LOCAL_HIGH_CONFIDENCE if accepted else RoutingBranch.REJECTED_LOW_CONFIDENCE

        elif policy is RoutingPolicy.CLOUD_ONLY:
            winner = self._best_from(EngineClass.CLOUD, variants, attempts, region, policy, cancel)
            accepted = True
            branch = RoutingBranch.MULTI_PASS_BEST

        else:
            if not self._available(EngineClass.LOCAL):
                raise EngineUnavailable(
                    "balanced routing needs an available local engine",
                    engine_class=EngineClass.LOCAL.value,
                    policy=policy.value,
                    region=region,
                )
            local = self._best_from(
                EngineClass.LOCAL, variants, attempts, region, policy, cancel, required=False
            )
            if local is not None and self._acceptable(local):
                winner = local
                branch = RoutingBranch.LOCAL_HIGH_CONFIDENCE
            else:
                if local is None:
                    logger.warning("All local attempts failed for region %s, escalating", _box(region))
                else:
                    logger.info(
                        "Local confidence %.1f below %.1f for region %s, escalating to cloud",
                        local.confidence, self.config.confidence_accept_threshold, _box(region),
                    )
                winner = self._best_from(EngineClass.CLOUD, variants, attempts, region, policy, cancel)
                branch = RoutingBranch.CLOUD_FALLBACK
            accepted = True

        if not self._has_text(winner):
            raise NoTextFound(
                f"No text found in region {_box(region)} "
                f"(best result {winner.text!r} from {winner.engine}/{winner.variant})",
                region=region,
                attempts=attempts,
            )

        decision_flags = set(flags)
        if winner.confidence < self.config.confidence_accept_threshold:
            decision_flags.add(DecisionFlag.LOW_CONFIDENCE)

        decision = RoutingDecision(
            result=winner,
            branch=branch,
            policy=policy,
            region=region,
            attempts=tuple(attempts),
            flags=frozenset(decision_flags),
            accepted=accepted,
        )
        logger.info(
            "Region %s -> %s via %s/%s (%.1f%%, %d attempts)",
            _box(region), branch.value, winner.engine, winner.variant,
            winner.confidence, len(attempts),
        )
        return decision

    def fan_out(
        self,
        engine: OCREngine,
        variants: Sequence[ImageVariant],
        cancel: Optional[CancellationToken] = None,
    ) -> List[Attempt]:
        """
        Run one engine on every variant concurrently

        Attempts come back in variant order. Attempts still running when
        the engine-class timeout expires are recorded as failures.
        """
        if cancel is not None:
            cancel.raise_if_cancelled(f"{engine.engine_id} fan-out")

        timeout = self.config.engine_timeout(engine.engine_class)
        executor = ThreadPoolExecutor(
            max_workers=len(variants), thread_name_prefix=f"ocr-{engine.engine_id}"
        )
        futures: List[Future] = []
        try:
            for variant in variants:
                futures.append(executor.submit(self._timed_recognize, engine, variant, timeout))

            deadline = time.monotonic() + timeout
            pending = set(futures)
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if cancel is not None:
                    cancel.raise_if_cancelled(f"{engine.engine_id} fan-out")
                _, pending = wait(pending, timeout=min(_WAIT_SLICE_S, remaining), return_when=FIRST_COMPLETED)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        attempts = []
        for variant, future in zip(variants, futures):
            if future.done() and not future.cancelled():
                attempts.append(future.result())
            else:
                future.cancel()
                logger.warning(
                    "%s timed out on variant %r after %.1fs", engine.engine_id, variant.name, timeout
                )
                attempts.append(Attempt(
                    engine=engine.engine_id,
                    engine_class=engine.engine_class,
                    variant=variant.name,
                    error=f"timed out after {timeout:.1f}s",
                    elapsed_ms=timeout * 1000.0,
                ))
        return attempts

    def _timed_recognize(self, engine: OCREngine, variant: ImageVariant, timeout: float) -> Attempt:
        start = time.perf_counter()
        try:
            result = engine.recognize(variant, timeout=timeout, language_hint=self.config.language_hint)
        except EngineError as exc:
            elapsed = (time.perf_counter() - start) * 1000.0
            logger.warning("%s failed on variant %r: %s", engine.engine_id, variant.name, exc)
            return Attempt(
                engine=engine.engine_id,
                engine_class=engine.engine_class,
                variant=variant.name,
                error=str(exc),
                elapsed_ms=elapsed,
            )
        elapsed = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "%s on %r: %.1f%% %r (%.0fms)",
            engine.engine_id, variant.name, result.confidence, result.text, elapsed,
        )
        return Attempt(
            engine=engine.engine_id,
            engine_class=engine.engine_class,
            variant=variant.name,
            result=result,
            elapsed_ms=elapsed,
        )

    def _available(self, engine_class: EngineClass) -> List[OCREngine]:
        return [e for e in self.engines[engine_class] if e.is_available()]

    def _best_from(
        self,
        engine_class: EngineClass,
        variants: Sequence[ImageVariant],
        attempts: List[Attempt],
        region: Optional[Region],
        policy: RoutingPolicy,
        cancel: Optional[CancellationToken],
        required: bool = True,
    ) -> Optional[RecognitionResult]:
        engines = self._available(engine_class)
        if not engines:
            raise EngineUnavailable(
                f"No available {engine_class.value} engine for policy {policy.value}",
                engine_class=engine_class.value,
                policy=policy.value,
                region=region,
                attempts=attempts,
            )

        for engine in engines:
            engine_attempts = self.fan_out(engine, variants, cancel)
            attempts.extend(engine_attempts)
            ranked = rank_attempts(engine_attempts)
            if ranked:
                return ranked[0].result
            logger.warning(
                "Every attempt of %s failed for region %s", engine.engine_id, _box(region)
            )

        if not required:
            return None
        raise RecognitionUnavailable(
            f"All {engine_class.value} recognition attempts failed for region {_box(region)}: "
            + "; ".join(f"{a.engine}/{a.variant}: {a.error}" for a in attempts if a.error),
            region=region,
            attempts=attempts,
        )

    def _has_text(self, result: RecognitionResult) -> bool:
        return len(result.text.strip()) >= self.config.min_text_length

    def _acceptable(self, result: RecognitionResult) -> bool:
        return (
            result.confidence >= self.config.confidence_accept_threshold
            and self._has_text(result)
        )


def _box(region: Optional[Region]):
    return region.as_tuple() if region is not None else None
