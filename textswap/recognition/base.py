"""
OCR engine contract

Every recognizer (local or cloud) implements recognize_image() over raw
pixels. The shared recognize() wrapper turns the raw output into a
RecognitionResult in source coordinates and converts any failure into an
EngineError, so the router can treat all engines identically.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..exceptions import EngineError
from ..imaging.preprocessing import ImageVariant
from ..models import EngineClass, RecognitionResult, TokenBox

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "eng"


@dataclass
class RawToken:
    """Token as reported by an engine, box in variant pixels"""
    text: str
    box: Tuple[int, int, int, int]  # (x, y, w, h)
    confidence: Optional[float] = None


@dataclass
class EngineOutput:
    """Engine boundary payload"""
    text: str
    confidence: float  # 0-100
    tokens: List[RawToken] = field(default_factory=list)


class OCREngine(ABC):
    """Interchangeable text recognition backend"""

    engine_id: str = "unknown"
    engine_class: EngineClass = EngineClass.LOCAL

    def __init__(self, language_hint: Optional[str] = None):
        self.language_hint = language_hint

    def is_available(self) -> bool:
        """Precondition check; unavailable engines are skipped by the router"""
        return True

    @abstractmethod
    def recognize_image(
        self,
        image: np.ndarray,
        language_hint: str,
        timeout: Optional[float] = None,
    ) -> EngineOutput:
        """
        Recognize text in raw pixels

        Args:
            image: Variant pixels (grayscale or BGR)
            language_hint: Language code passed through to the backend
            timeout: Seconds the backend may take, None for no limit

        Returns:
            EngineOutput with text, 0-100 confidence and token boxes
        """
        raise NotImplementedError

    def recognize(
        self,
        variant: ImageVariant,
        timeout: Optional[float] = None,
        language_hint: Optional[str] = None,
    ) -> RecognitionResult:
        """
        Recognize one preprocessing variant

        The engine's own language_hint, when set, wins over the per-call one.

        Raises:
            EngineError: backend failed, timed out or returned garbage
        """
        try:
            hint = self.language_hint or language_hint or DEFAULT_LANGUAGE
            output = self.recognize_image(variant.pixels, hint, timeout)
        except EngineError as exc:
            if exc.engine is None:
                exc.engine = self.engine_id
            if exc.variant is None:
                exc.variant = variant.name
            raise
        except Exception as exc:
            raise EngineError(
                f"{self.engine_id} failed on variant {variant.name!r}: {exc}",
                engine=self.engine_id,
                variant=variant.name,
            ) from exc

        return self._to_result(output, variant)

    def _to_result(self, output: EngineOutput, variant: ImageVariant) -> RecognitionResult:
        if output is None or not isinstance(output.text, str):
            raise EngineError(
                f"{self.engine_id} returned a malformed response for variant {variant.name!r}",
                engine=self.engine_id,
                variant=variant.name,
            )
        try:
            confidence = float(output.confidence)
        except (TypeError, ValueError):
            raise EngineError(
                f"{self.engine_id} returned non-numeric confidence {output.confidence!r}",
                engine=self.engine_id,
                variant=variant.name,
            ) from None
        if np.isnan(confidence):
            raise EngineError(
                f"{self.engine_id} returned NaN confidence",
                engine=self.engine_id,
                variant=variant.name,
            )
        confidence = min(100.0, max(0.0, confidence))

        token_boxes = tuple(
            TokenBox(
                text=token.text,
                bounds=variant.to_source_box(token.box),
                confidence=token.confidence,
            )
            for token in output.tokens
            if token.box[2] > 0 and token.box[3] > 0
        )
        return RecognitionResult(
            text=output.text,
            confidence=confidence,
            token_boxes=token_boxes,
            engine=self.engine_id,
            variant=variant.name,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(engine_id={self.engine_id!r}, class={self.engine_class.value})"
