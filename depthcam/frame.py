"""Frame containers shared by sensors, processors and consumers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np

from utils.settings import DEPTH_SCALE, DEVICE_TICKS_TO_SECONDS


class StreamKind(str, Enum):
    """Image streams delivered by a depth camera."""

    COLOR = "color"
    INFRARED = "infrared"
    DEPTH = "depth"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class PixelFormat(str, Enum):
    """Pixel layouts produced or consumed by the pipeline."""

    RGBA8 = "rgba8"
    BGRA8 = "bgra8"
    RGB8 = "rgb8"
    BGR8 = "bgr8"
    L8 = "l8"
    L16 = "l16"
    Z16 = "z16"
    R32F = "r32f"

    @property
    def channels(self) -> int:
        return _CHANNELS[self]

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_DTYPES[self])

    def shape(self, width: int, height: int) -> Tuple[int, ...]:
        """Array shape of a ``width`` x ``height`` image in this format."""
        if self.channels == 1:
            return (height, width)
        return (height, width, self.channels)


_CHANNELS = {
    PixelFormat.RGBA8: 4,
    PixelFormat.BGRA8: 4,
    PixelFormat.RGB8: 3,
    PixelFormat.BGR8: 3,
    PixelFormat.L8: 1,
    PixelFormat.L16: 1,
    PixelFormat.Z16: 1,
    PixelFormat.R32F: 1,
}

_DTYPES = {
    PixelFormat.RGBA8: np.uint8,
    PixelFormat.BGRA8: np.uint8,
    PixelFormat.RGB8: np.uint8,
    PixelFormat.BGR8: np.uint8,
    PixelFormat.L8: np.uint8,
    PixelFormat.L16: np.uint16,
    PixelFormat.Z16: np.uint16,
    PixelFormat.R32F: np.float32,
}


@dataclass(eq=False)
class RawFrame:
    """
    One frame as delivered by the sensor collaborator.

    ``timestamp`` is the device clock in ticks (see
    :data:`utils.settings.DEVICE_TICKS_TO_SECONDS`); it is not wall-clock time.
    ``pixels`` may be flat or already shaped. ``depth_scale`` is the size of
    one raw depth unit in meters and is only read for depth frames.
    """

    width: int
    height: int
    timestamp: int
    pixels: np.ndarray
    pixel_format: PixelFormat
    depth_scale: float = DEPTH_SCALE

    @property
    def expected_size(self) -> int:
        return self.width * self.height * self.pixel_format.channels

    def is_well_formed(self) -> bool:
        """True when the buffer holds exactly one image of the declared format."""
        if self.pixels is None or self.width <= 0 or self.height <= 0:
            return False
        return (
            self.pixels.size == self.expected_size
            and self.pixels.dtype == self.pixel_format.dtype
        )

    def image(self) -> np.ndarray:
        """Shaped view on ``pixels`` (no copy)."""
        return self.pixels.reshape(self.pixel_format.shape(self.width, self.height))


@dataclass(eq=False)
class Frame:
    """
    A processed frame as published to consumers.

    Consumers must treat ``pixels`` as read-only. The storage of frames with
    ``owns_buffer`` set is recycled once the frame leaves the history, so copy
    the array to keep it longer.
    """

    pixels: np.ndarray
    pixel_format: PixelFormat
    timestamp: int
    sequence_number: int
    interval_seconds: float = 0.0
    name: str = ""
    depth_range: Tuple[float, float] | None = None
    owns_buffer: bool = True

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def stride(self) -> int:
        """Bytes per image row."""
        return int(self.pixels.strides[0])

    @property
    def timestamp_seconds(self) -> float:
        return self.timestamp * DEVICE_TICKS_TO_SECONDS
