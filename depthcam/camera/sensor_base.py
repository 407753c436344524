"""Abstract sensor collaborator consumed by the frame pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

from depthcam.frame import RawFrame, StreamKind
from depthcam.intrinsics import CameraIntrinsics


class SensorSource(ABC):
    """Minimal device API the pipeline pulls frames and calibration from."""

    @abstractmethod
    def is_initialized(self) -> bool:
        """Return ``True`` once the device delivers frames."""

    @abstractmethod
    def sensor_count(self) -> int:
        """Number of connected sensors."""

    def update(self) -> None:
        """
        Refresh the newest frame of every stream.

        Called once at the start of each pipeline tick. Implementations drain
        frames buffered since the last call and keep only the latest one.
        """

    def ensure_stream(self, sensor_index: int, kind: StreamKind) -> None:
        """Ask the device to produce ``kind`` frames for ``sensor_index``."""

    @abstractmethod
    def latest_frame(self, sensor_index: int, kind: StreamKind) -> RawFrame | None:
        """Newest raw frame of a stream, ``None`` if none arrived yet."""

    @abstractmethod
    def intrinsics(
        self, sensor_index: int, kind: StreamKind
    ) -> CameraIntrinsics | None:
        """Calibration of the optic behind ``kind`` (depth optic for IR/depth)."""

    @abstractmethod
    def depth_range(self, sensor_index: int) -> Tuple[float, float]:
        """Current ``(min, max)`` measurable distance in meters."""


def optic_for(kind: StreamKind) -> StreamKind:
    """Infrared and depth images come from the same optic."""
    return StreamKind.COLOR if kind is StreamKind.COLOR else StreamKind.DEPTH
