"""Lens undistortion remap tables and their cache."""

from __future__ import annotations

from dataclasses import dataclass, field

import cv2
import numpy as np

from depthcam.intrinsics import CameraIntrinsics
from utils.error_tracker import CalibrationError
from utils.logger import Logger, LoggerType


@dataclass(eq=False)
class UndistortionMap:
    """
    Destination to source pixel lookup for one resolution and calibration.

    ``map_x``/``map_y`` are ``float32`` arrays of shape ``(height, width)``.
    """

    width: int
    height: int
    intrinsics: CameraIntrinsics
    map_x: np.ndarray
    map_y: np.ndarray
    _flipped: tuple[np.ndarray, np.ndarray] | None = field(default=None, repr=False)

    def matches(self, width: int, height: int, intrinsics: CameraIntrinsics) -> bool:
        return (
            self.width == width
            and self.height == height
            and self.intrinsics == intrinsics
        )

    def flipped(self) -> tuple[np.ndarray, np.ndarray]:
        """Row-reversed maps: remapping through them undistorts and flips at once."""
        if self._flipped is None:
            self._flipped = (
                np.ascontiguousarray(self.map_x[::-1]),
                np.ascontiguousarray(self.map_y[::-1]),
            )
        return self._flipped

    def apply(
        self,
        src: np.ndarray,
        out: np.ndarray,
        interpolation: int = cv2.INTER_LINEAR,
        flip_vertically: bool = False,
    ) -> np.ndarray:
        """Remap ``src`` into ``out``; optionally emit the result upside down."""
        map_x, map_y = self.flipped() if flip_vertically else (self.map_x, self.map_y)
        cv2.remap(
            src,
            map_x,
            map_y,
            interpolation,
            dst=out,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
        return out


def build_undistortion_map(
    width: int, height: int, intrinsics: CameraIntrinsics
) -> UndistortionMap:
    """
    Compute pinhole rectification maps with radial and tangential distortion.

    Intrinsics calibrated at another resolution are rescaled to the output
    size first. The new camera matrix equals the calibrated one, so the map
    only removes distortion and never resizes.
    """
    if width <= 0 or height <= 0:
        raise CalibrationError(f"Zero output resolution: {width}x{height}")
    intrinsics.validate()
    scaled = intrinsics.scaled_to(width, height)
    K = scaled.camera_matrix()
    map_x, map_y = cv2.initUndistortRectifyMap(
        K,
        scaled.dist_coeffs(),
        None,
        K,
        (int(width), int(height)),
        cv2.CV_32FC1,
    )
    return UndistortionMap(width, height, intrinsics, map_x, map_y)


class UndistortionMapCache:
    """
    Single-entry cache of the map for the current resolution and intrinsics.

    Keys compare intrinsics by value: sensors may hand over a fresh but equal
    intrinsics object every tick without forcing a rebuild.
    """

    def __init__(self, logger: LoggerType | None = None) -> None:
        self.logger = logger or Logger.get_logger("depthcam.undistort")
        self._map: UndistortionMap | None = None
        self.builds = 0

    @property
    def current(self) -> UndistortionMap | None:
        return self._map

    def get_or_build(
        self, width: int, height: int, intrinsics: CameraIntrinsics | None
    ) -> UndistortionMap:
        """
        Return the cached map for ``(width, height, intrinsics)`` or rebuild it.

        Raises :class:`CalibrationError` when no usable intrinsics are given;
        the cached map is kept so a later valid call may still hit it.
        """
        if intrinsics is None:
            raise CalibrationError("No intrinsics available")
        if self._map is not None and self._map.matches(width, height, intrinsics):
            return self._map
        new_map = build_undistortion_map(width, height, intrinsics)
        self._map = new_map
        self.builds += 1
        self.logger.debug(
            f"Built undistortion map {width}x{height} "
            f"(fx={intrinsics.fx:.2f}, fy={intrinsics.fy:.2f})"
        )
        return new_map

    def clear(self) -> None:
        self._map = None
