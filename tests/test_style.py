"""Tests for style estimation."""

import numpy as np
import pytest

from textswap.models import Alignment, Region, TokenBox
from textswap.style import StyleEstimator

from tests.conftest import draw_block

REGION = Region(0, 0, 200, 60)


def _crop(x, w, background=(240, 230, 220), ink=(20, 40, 200)):
    crop = np.empty((60, 200, 3), dtype=np.uint8)
    crop[:] = background
    draw_block(crop, x, 20, w, 20, value=ink)
    return crop


class TestStyleEstimator:
    def test_colours_are_rgb(self):
        style = StyleEstimator().estimate(_crop(10, 100), REGION)
        assert style.background_estimate == (220, 230, 240)
        assert style.color_estimate == (200, 40, 20)

    def test_font_size_from_ink_band(self):
        style = StyleEstimator().estimate(_crop(10, 100), REGION)
        assert style.font_size_estimate == 20.0

    def test_font_size_prefers_token_heights(self):
        tokens = [
            TokenBox("a", Region(0, 0, 10, 12)),
            TokenBox("b", Region(20, 0, 10, 14)),
            TokenBox("c", Region(40, 0, 10, 30)),
        ]
        style = StyleEstimator().estimate(_crop(10, 100), REGION, tokens)
        assert style.font_size_estimate == 14.0

    @pytest.mark.parametrize("x, w, expected", [
        (10, 100, Alignment.LEFT),
        (50, 100, Alignment.CENTER),
        (150, 40, Alignment.RIGHT),
    ])
    def test_alignment(self, x, w, expected):
        assert StyleEstimator().estimate(_crop(x, w), REGION).alignment is expected

    def test_light_text_on_dark_background(self):
        style = StyleEstimator().estimate(_crop(10, 100, background=(10, 10, 10), ink=(250, 250, 250)), REGION)
        assert style.background_estimate == (10, 10, 10)
        assert style.color_estimate == (250, 250, 250)

    def test_uniform_crop(self):
        crop = np.full((60, 200), 128, dtype=np.uint8)
        style = StyleEstimator().estimate(crop, REGION)
        assert style.color_estimate == style.background_estimate == (128, 128, 128)
        assert style.font_size_estimate == 60.0
        assert style.alignment is Alignment.LEFT
