"""Tests for scoped buffer lifetime."""

import numpy as np
import pytest

from textswap.exceptions import BufferReleasedError, InvalidRegion, ResourceExhausted
from textswap.imaging.buffers import BufferLedger, BufferScope, ImageBuffer, SourceImage, acquire
from textswap.models import Region


@pytest.fixture
def gradient():
    return np.arange(100 * 80, dtype=np.uint32).reshape(80, 100).astype(np.uint8)


class TestSourceImage:
    def test_source_is_read_only(self, gradient):
        source = SourceImage(gradient)
        with pytest.raises(ValueError):
            source.pixels[0, 0] = 1
        # The caller's array is untouched and still writeable
        gradient[0, 0] = 7
        assert gradient[0, 0] == 7

    def test_rejects_non_uint8(self):
        with pytest.raises(ValueError):
            SourceImage(np.zeros((10, 10), dtype=np.float32))

    def test_dimensions(self):
        source = SourceImage(np.zeros((30, 40, 3), dtype=np.uint8))
        assert (source.width, source.height, source.channels) == (40, 30, 3)


class TestAcquire:
    def test_crop_matches_source(self, gradient, ledger):
        buffer = acquire(gradient, Region(10, 5, 20, 15), ledger=ledger)
        np.testing.assert_array_equal(buffer.pixels, gradient[5:20, 10:30])
        assert (buffer.width, buffer.height) == (20, 15)

    def test_crop_is_independent(self, gradient):
        buffer = acquire(gradient, Region(0, 0, 10, 10))
        buffer.pixels[0, 0] = 255
        assert buffer.pixels.flags.writeable
        assert gradient[0, 0] == 0

    @pytest.mark.parametrize("region", [
        Region(-1, 0, 10, 10),
        Region(95, 0, 10, 10),
        Region(0, 75, 10, 10),
        Region(0, 0, 101, 80),
    ])
    def test_partially_outside_is_invalid(self, gradient, ledger, region):
        with pytest.raises(InvalidRegion) as exc_info:
            acquire(gradient, region, ledger=ledger)
        assert exc_info.value.region == region
        assert ledger.acquired == 0

    def test_oversized_crop_is_resource_exhausted(self, gradient, ledger):
        with pytest.raises(ResourceExhausted):
            acquire(gradient, Region(0, 0, 100, 80), ledger=ledger, max_pixels=1000)
        assert ledger.acquired == 0


class TestImageBuffer:
    def test_release_is_idempotent(self, ledger):
        buffer = ImageBuffer(np.zeros((2, 2), dtype=np.uint8), ledger=ledger)
        buffer.release()
        buffer.release()
        buffer.release()
        assert buffer.released
        assert ledger.acquired == 1
        assert ledger.released == 1

    def test_pixels_after_release_raise(self):
        buffer = ImageBuffer(np.zeros((2, 2), dtype=np.uint8))
        buffer.release()
        with pytest.raises(BufferReleasedError):
            buffer.pixels


class TestBufferScope:
    def test_releases_everything_on_exit(self, gradient, ledger):
        with BufferScope(ledger) as scope:
            crop = scope.acquire(gradient, Region(0, 0, 10, 10))
            derived = scope.adopt(crop.pixels * 2, "doubled")
            assert ledger.live == 2
        assert crop.released and derived.released
        assert ledger.balanced

    def test_releases_on_exception(self, gradient, ledger):
        with pytest.raises(RuntimeError):
            with BufferScope(ledger) as scope:
                scope.acquire(gradient, Region(0, 0, 10, 10))
                scope.adopt(np.zeros((3, 3), dtype=np.uint8), "tmp")
                raise RuntimeError("stage failed")
        assert ledger.acquired == 2
        assert ledger.balanced

    def test_failed_acquire_leaves_ledger_balanced(self, gradient, ledger):
        with pytest.raises(InvalidRegion):
            with BufferScope(ledger) as scope:
                scope.acquire(gradient, Region(0, 0, 10, 10))
                scope.acquire(gradient, Region(90, 0, 20, 10))
        assert ledger.balanced

    def test_closed_scope_refuses_new_buffers(self, gradient, ledger):
        scope = BufferScope(ledger)
        scope.release_all()
        with pytest.raises(BufferReleasedError):
            scope.acquire(gradient, Region(0, 0, 10, 10))
        with pytest.raises(BufferReleasedError):
            scope.adopt(np.zeros((2, 2), dtype=np.uint8), "late")
        assert ledger.balanced

    def test_ledger_counts_across_scopes(self, gradient):
        ledger = BufferLedger()
        for _ in range(3):
            with BufferScope(ledger) as scope:
                scope.acquire(gradient, Region(0, 0, 5, 5))
        assert ledger.acquired == 3
        assert ledger.released == 3
