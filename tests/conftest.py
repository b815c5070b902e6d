"""
Pytest configuration and fixtures for textswap tests.

Engines are scripted mocks; images are synthetic numpy arrays.
"""

import threading
import time

import cv2
import numpy as np
import pytest

from textswap.config import PipelineConfig
from textswap.imaging.buffers import BufferLedger, BufferScope
from textswap.imaging.preprocessing import ImageVariant
from textswap.models import EngineClass, Region
from textswap.recognition.base import EngineOutput, OCREngine, RawToken


class ScriptedEngine(OCREngine):
    """
    Mock engine answering per variant name

    responses maps variant name -> (text, confidence), an Exception
    instance to raise, or an EngineOutput. Unlisted variants get default.
    """

    def __init__(
        self,
        engine_id="mock-local",
        engine_class=EngineClass.LOCAL,
        responses=None,
        default=("", 0.0),
        delay=0.0,
        available=True,
    ):
        super().__init__()
        self.engine_id = engine_id
        self.engine_class = engine_class
        self.responses = dict(responses or {})
        self.default = default
        self.delay = delay
        self.available = available
        self.calls = []
        self.last_language_hint = None
        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def call_count(self):
        with self._lock:
            return len(self.calls)

    def is_available(self):
        return self.available

    def recognize(self, variant, timeout=None, language_hint=None):
        with self._lock:
            self.calls.append(variant.name)
        self._local.variant = variant.name
        return super().recognize(variant, timeout, language_hint)

    def recognize_image(self, image, language_hint, timeout=None):
        self.last_language_hint = language_hint
        variant = self._local.variant
        delay = self.delay.get(variant, 0.0) if isinstance(self.delay, dict) else self.delay
        if delay:
            time.sleep(delay)
        response = self.responses.get(variant, self.default)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, EngineOutput):
            return response
        text, confidence = response
        height, width = image.shape[:2]
        tokens = [RawToken(text=text, box=(0, 0, width, height), confidence=confidence)] if text else []
        return EngineOutput(text=text, confidence=confidence, tokens=tokens)


@pytest.fixture
def ledger():
    """Fresh acquire/release counter."""
    return BufferLedger()


@pytest.fixture
def config():
    """Default configuration."""
    return PipelineConfig()


@pytest.fixture
def blank_image():
    """White 300x400 BGR image."""
    return np.full((300, 400, 3), 255, dtype=np.uint8)


def draw_block(image, x, y, w, h, value=0):
    """Fill a solid block standing in for a word of text."""
    if np.isscalar(value) and image.ndim == 3:
        value = (value,) * image.shape[2]
    cv2.rectangle(image, (x, y), (x + w - 1, y + h - 1), value, thickness=-1)
    return image


@pytest.fixture
def text_image(blank_image):
    """Three text blocks: two on the first row, one on the second."""
    draw_block(blank_image, 200, 25, 100, 30)
    draw_block(blank_image, 20, 20, 100, 30)
    draw_block(blank_image, 20, 120, 150, 30)
    return blank_image


@pytest.fixture
def make_variants(ledger):
    """Factory for hand-built variants owned by a test scope."""
    scopes = []

    def _make(names=("original", "enhanced", "binarized"), region=None):
        region = region or Region(0, 0, 40, 20)
        scope = BufferScope(ledger)
        scopes.append(scope)
        return [
            ImageVariant(
                name=name,
                stage=name,
                region=region,
                buffer=scope.adopt(np.full((region.h, region.w), 255, dtype=np.uint8), f"variant:{name}", region),
            )
            for name in names
        ]

    yield _make
    for scope in scopes:
        scope.release_all()


@pytest.fixture
def engine_factory():
    """Build ScriptedEngine instances."""
    return ScriptedEngine
