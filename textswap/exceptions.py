"""
Error Taxonomy

Every error raised by the pipeline derives from TextSwapError:

- InvalidRegion: bad geometry or out-of-bounds selection (caller error)
- EngineError / EngineTimeout: one engine attempt failed (transient)
- EngineUnavailable: no usable engine for a required engine class (a
  RecognitionFailure, so it keeps the attempts made before it)
- RecognitionUnavailable: every attempt of a required engine class failed
- NoTextFound: recognition succeeded but produced empty/too-short text
- ResourceExhausted: buffer acquisition failed for one region
- OperationCancelled: caller cancelled an in-flight operation

Low confidence is not an error: it is a flag on RoutingDecision.
"""

from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Attempt, Region


class TextSwapError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(TextSwapError, ValueError):
    """Invalid configuration value"""


class InvalidRegion(TextSwapError, ValueError):
    """Region geometry is invalid or lies outside the source image"""

    def __init__(self, message: str, region: Optional["Region"] = None):
        super().__init__(message)
        self.region = region


class BufferReleasedError(TextSwapError):
    """Pixel access on a buffer that has already been released"""


class ResourceExhausted(TextSwapError):
    """Buffer acquisition failed (pathological size, out of memory)"""

    def __init__(self, message: str, region: Optional["Region"] = None):
        super().__init__(message)
        self.region = region


class OperationCancelled(TextSwapError):
    """The caller cancelled the operation"""

    def __init__(self, message: str = "operation cancelled", region: Optional["Region"] = None):
        super().__init__(message)
        self.region = region


class EngineError(TextSwapError):
    """A single engine invocation failed"""

    def __init__(
        self,
        message: str,
        engine: Optional[str] = None,
        variant: Optional[str] = None,
    ):
        super().__init__(message)
        self.engine = engine
        self.variant = variant


class EngineTimeout(EngineError):
    """Engine invocation exceeded its timeout"""


class RecognitionFailure(TextSwapError):
    """
    Base for failures that end a region's recognition

    Carries the region and every attempt made so the caller can render an
    actionable message (which engines ran, what confidences they reported).
    """

    def __init__(
        self,
        message: str,
        region: Optional["Region"] = None,
        attempts: Sequence["Attempt"] = (),
    ):
        super().__init__(message)
        self.region = region
        self.attempts: List["Attempt"] = list(attempts)

    @property
    def engines_attempted(self) -> List[str]:
        seen: List[str] = []
        for attempt in self.attempts:
            if attempt.engine not in seen:
                seen.append(attempt.engine)
        return seen

    @property
    def confidences_seen(self) -> List[float]:
        return [a.result.confidence for a in self.attempts if a.result is not None]

    def details(self) -> Dict:
        """Structured detail for upstream error rendering"""
        return {
            "error": type(self).__name__,
            "message": str(self),
            "region": self.region.as_tuple() if self.region is not None else None,
            "engines_attempted": self.engines_attempted,
            "confidences_seen": self.confidences_seen,
            "attempts": [a.to_dict() for a in self.attempts],
        }


class RecognitionUnavailable(RecognitionFailure):
    """All attempts for a required engine class failed"""


class NoTextFound(RecognitionFailure):
    """Winning result was empty or shorter than the minimum text length"""


class EngineUnavailable(RecognitionFailure):
    """
    No available engine for an engine class the policy requires

    Attempts made by other engine classes before the missing one was
    needed (e.g. low-confidence local attempts under balanced routing)
    are kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        engine_class: Optional[str] = None,
        policy: Optional[str] = None,
        region: Optional["Region"] = None,
        attempts: Sequence["Attempt"] = (),
    ):
        super().__init__(message, region=region, attempts=attempts)
        self.engine_class = engine_class
        self.policy = policy

    def details(self) -> Dict:
        detail = super().details()
        detail["engine_class"] = self.engine_class
        detail["policy"] = self.policy
        return detail
