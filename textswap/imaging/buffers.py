"""
Image Buffers and Scoped Lifetime

Every pixel buffer derived from the source image goes through this module:

- SourceImage: shared, read-only view over the caller's pixels
- acquire(): crop a region into an independently owned ImageBuffer
- BufferScope: tracks all buffers of one processing chain and releases
  them together on every exit path (success, early return, exception)
- BufferLedger: acquire/release counters for leak checks

Release is idempotent. Reading pixels from a released buffer raises
BufferReleasedError rather than returning stale data.
"""

import logging
import threading
from typing import List, Optional, Union

import numpy as np

from ..exceptions import BufferReleasedError, InvalidRegion, ResourceExhausted
from ..models import Region

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_PIXELS = 50_000_000


class SourceImage:
    """
    Read-only source pixels (H x W or H x W x C, uint8)

    The wrapped array is a non-writeable view, so concurrent region
    pipelines can share it without copying.
    """

    def __init__(self, pixels: np.ndarray):
        if not isinstance(pixels, np.ndarray):
            raise TypeError(f"Expected numpy array, got {type(pixels).__name__}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"Source image must be uint8, got {pixels.dtype}")
        if pixels.ndim not in (2, 3) or (pixels.ndim == 3 and pixels.shape[2] not in (1, 3, 4)):
            raise ValueError(f"Unsupported image shape {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("Source image is empty")

        view = pixels.view()
        view.flags.writeable = False
        self._pixels = view

    @classmethod
    def wrap(cls, image: Union["SourceImage", np.ndarray]) -> "SourceImage":
        return image if isinstance(image, SourceImage) else cls(image)

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def channels(self) -> int:
        return 1 if self._pixels.ndim == 2 else self._pixels.shape[2]

    @property
    def area(self) -> int:
        return self.width * self.height

    def contains(self, region: Region) -> bool:
        return (
            region.x >= 0
            and region.y >= 0
            and region.right <= self.width
            and region.bottom <= self.height
        )


class BufferLedger:
    """Thread-safe acquire/release counters"""

    def __init__(self):
        self._lock = threading.Lock()
        self._acquired = 0
        self._released = 0

    def record_acquire(self) -> None:
        with self._lock:
            self._acquired += 1

    def record_release(self) -> None:
        with self._lock:
            self._released += 1

    @property
    def acquired(self) -> int:
        with self._lock:
            return self._acquired

    @property
    def released(self) -> int:
        with self._lock:
            return self._released

    @property
    def live(self) -> int:
        with self._lock:
            return self._acquired - self._released

    @property
    def balanced(self) -> bool:
        return self.live == 0


class ImageBuffer:
    """Independently owned pixel data with explicit, idempotent release"""

    def __init__(
        self,
        pixels: np.ndarray,
        region: Optional[Region] = None,
        label: str = "",
        ledger: Optional[BufferLedger] = None,
    ):
        self._pixels: Optional[np.ndarray] = pixels
        self._lock = threading.Lock()
        self.region = region
        self.label = label
        self._ledger = ledger
        if ledger is not None:
            ledger.record_acquire()

    @property
    def pixels(self) -> np.ndarray:
        pixels = self._pixels
        if pixels is None:
            raise BufferReleasedError(f"Buffer {self.label or id(self)} has been released")
        return pixels

    @property
    def released(self) -> bool:
        return self._pixels is None

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    def release(self) -> None:
        with self._lock:
            if self._pixels is None:
                return
            self._pixels = None
        if self._ledger is not None:
            self._ledger.record_release()

    def __repr__(self) -> str:
        state = "released" if self.released else "x".join(str(d) for d in self.pixels.shape)
        return f"ImageBuffer({self.label!r}, {state})"


def acquire(
    source: Union[SourceImage, np.ndarray],
    region: Region,
    ledger: Optional[BufferLedger] = None,
    label: str = "crop",
    max_pixels: int = DEFAULT_MAX_BUFFER_PIXELS,
) -> ImageBuffer:
    """
    Crop region out of the source into a new buffer

    Raises:
        InvalidRegion: region lies (even partially) outside the source
        ResourceExhausted: crop too large or allocation failed
    """
    source = SourceImage.wrap(source)
    if not source.contains(region):
        raise InvalidRegion(
            f"Region {region.as_tuple()} exceeds source bounds {source.width}x{source.height}",
            region=region,
        )
    if region.area > max_pixels:
        raise ResourceExhausted(
            f"Region {region.as_tuple()} needs {region.area} pixels, limit is {max_pixels}",
            region=region,
        )
    try:
        crop = np.array(
            source.pixels[region.y:region.bottom, region.x:region.right], copy=True
        )
    except MemoryError as exc:
        raise ResourceExhausted(
            f"Out of memory cropping region {region.as_tuple()}", region=region
        ) from exc
    return ImageBuffer(crop, region=region, label=label, ledger=ledger)


class BufferScope:
    """
    Owns every buffer of one processing chain

    Usage:
        with BufferScope(ledger) as scope:
            crop = scope.acquire(source, region)
            gray = scope.adopt(to_gray(crop.pixels), "gray")
            ...
        # all buffers released here, also when an exception escaped
    """

    def __init__(self, ledger: Optional[BufferLedger] = None, max_pixels: int = DEFAULT_MAX_BUFFER_PIXELS):
        self.ledger = ledger
        self.max_pixels = max_pixels
        self._buffers: List[ImageBuffer] = []
        self._lock = threading.Lock()
        self._closed = False

    def _track(self, buffer: ImageBuffer) -> ImageBuffer:
        with self._lock:
            if self._closed:
                buffer.release()
                raise BufferReleasedError("Cannot track a buffer in a closed scope")
            self._buffers.append(buffer)
        return buffer

    def acquire(self, source: Union[SourceImage, np.ndarray], region: Region, label: str = "crop") -> ImageBuffer:
        if self._closed:
            raise BufferReleasedError("Cannot acquire from a closed scope")
        return self._track(
            acquire(source, region, ledger=self.ledger, label=label, max_pixels=self.max_pixels)
        )

    def adopt(self, pixels: np.ndarray, label: str, region: Optional[Region] = None) -> ImageBuffer:
        """Track a derived array as a buffer of this scope"""
        return self._track(ImageBuffer(pixels, region=region, label=label, ledger=self.ledger))

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)

    @property
    def closed(self) -> bool:
        return self._closed

    def release_all(self) -> None:
        with self._lock:
            buffers, self._buffers = self._buffers, []
            self._closed = True
        for buffer in buffers:
            buffer.release()
        if buffers:
            logger.debug("Released %d buffers", len(buffers))

    def __enter__(self) -> "BufferScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()
