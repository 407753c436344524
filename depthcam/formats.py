"""Pixel format and bit depth conversions."""

from __future__ import annotations

import cv2
import numpy as np

from depthcam.frame import PixelFormat
from utils.error_tracker import FrameFormatError
from utils.logger import Logger, LoggerType

# OpenCV luma conversion per interleaved source layout (BT.601 weights).
_LUMA_CODES = {
    PixelFormat.RGBA8: cv2.COLOR_RGBA2GRAY,
    PixelFormat.BGRA8: cv2.COLOR_BGRA2GRAY,
    PixelFormat.RGB8: cv2.COLOR_RGB2GRAY,
    PixelFormat.BGR8: cv2.COLOR_BGR2GRAY,
}


class FormatConverter:
    """
    Stateless image transforms writing into caller-provided buffers.

    One instance is created by each :class:`~depthcam.pipeline.FramePipeline`
    and handed to its stream processors; there is no shared global helper.
    Every method returns ``out`` so calls can be chained.
    """

    def __init__(self, logger: LoggerType | None = None) -> None:
        self.logger = logger or Logger.get_logger("depthcam.formats")

    def to_luminance(
        self, src: np.ndarray, pixel_format: PixelFormat, out: np.ndarray
    ) -> np.ndarray:
        """Weighted RGB(A) to single channel 8 bit luma."""
        code = _LUMA_CODES.get(pixel_format)
        if code is None:
            raise FrameFormatError(f"No luminance conversion from {pixel_format}")
        cv2.cvtColor(src, code, dst=out)
        return out

    def scale_16_to_8(
        self, src: np.ndarray, scale: float, out: np.ndarray
    ) -> np.ndarray:
        """``out = clamp(src * scale / 256, 0, 255)`` for 16 bit linear input."""
        cv2.convertScaleAbs(src, dst=out, alpha=float(scale) / 256.0, beta=0.0)
        return out

    def normalize_depth(
        self,
        src: np.ndarray,
        min_distance: float,
        max_distance: float,
        depth_scale: float,
        out: np.ndarray,
    ) -> np.ndarray:
        """
        Fixed-point depth to normalized float:
        ``(raw * depth_scale - min_distance) / (max_distance - min_distance)``.

        Distances are in meters, ``depth_scale`` is meters per raw unit.
        Values are not clamped, so readings outside the range stay
        recoverable as absolute distances.
        """
        span = float(max_distance) - float(min_distance)
        if not span > 0.0:
            raise FrameFormatError(
                f"Invalid depth range [{min_distance}, {max_distance}]"
            )
        np.multiply(src, float(depth_scale) / span, out=out)
        np.subtract(out, float(min_distance) / span, out=out)
        return out

    def flip_vertical(self, src: np.ndarray, out: np.ndarray) -> np.ndarray:
        """Row-reversal copy of ``src`` into ``out``."""
        cv2.flip(src, 0, dst=out)
        return out

    def copy(self, src: np.ndarray, out: np.ndarray) -> np.ndarray:
        np.copyto(out, src)
        return out
