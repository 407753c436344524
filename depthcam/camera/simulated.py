"""In-process sensors: a scripted stub and a synthetic pattern generator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Set, Tuple

import numpy as np

from depthcam.frame import PixelFormat, RawFrame, StreamKind
from depthcam.intrinsics import CameraIntrinsics
from utils.settings import pipeline as PIPECFG
from .sensor_base import SensorSource, optic_for


@dataclass
class StubSensor(SensorSource):
    """Sensor stub returning whatever frames were pushed into it."""

    initialized: bool = True
    sensors: int = 1
    frames: Dict[Tuple[int, StreamKind], RawFrame] = field(default_factory=dict)
    calibrations: Dict[Tuple[int, StreamKind], CameraIntrinsics] = field(
        default_factory=dict
    )
    ranges: Dict[int, Tuple[float, float]] = field(default_factory=dict)
    requested: Set[Tuple[int, StreamKind]] = field(default_factory=set)
    updates: int = 0

    def push(self, kind: StreamKind, raw: RawFrame, sensor_index: int = 0) -> None:
        self.frames[(sensor_index, kind)] = raw

    def set_intrinsics(
        self,
        kind: StreamKind,
        intrinsics: CameraIntrinsics | None,
        sensor_index: int = 0,
    ) -> None:
        key = (sensor_index, optic_for(kind))
        if intrinsics is None:
            self.calibrations.pop(key, None)
        else:
            self.calibrations[key] = intrinsics

    def set_depth_range(
        self, min_distance: float, max_distance: float, sensor_index: int = 0
    ) -> None:
        self.ranges[sensor_index] = (min_distance, max_distance)

    def is_initialized(self) -> bool:
        return self.initialized

    def sensor_count(self) -> int:
        return self.sensors

    def update(self) -> None:
        self.updates += 1

    def ensure_stream(self, sensor_index: int, kind: StreamKind) -> None:
        self.requested.add((sensor_index, kind))

    def latest_frame(self, sensor_index: int, kind: StreamKind) -> RawFrame | None:
        return self.frames.get((sensor_index, kind))

    def intrinsics(
        self, sensor_index: int, kind: StreamKind
    ) -> CameraIntrinsics | None:
        return self.calibrations.get((sensor_index, optic_for(kind)))

    def depth_range(self, sensor_index: int) -> Tuple[float, float]:
        return self.ranges.get(
            sensor_index, (PIPECFG.min_depth_m, PIPECFG.max_depth_m)
        )


@dataclass
class SyntheticSensor(StubSensor):
    """
    Generates moving test patterns for every requested stream.

    A new frame appears every ``frame_every`` updates, ``ticks_per_frame``
    device ticks apart, which lets offline runs exercise slow devices.
    """

    width: int = 320
    height: int = 240
    ticks_per_frame: int = 333_333
    frame_every: int = 1
    clock: int = 0

    def __post_init__(self) -> None:
        fx = fy = 0.9 * self.width
        for kind in (StreamKind.COLOR, StreamKind.DEPTH):
            self.set_intrinsics(
                kind,
                CameraIntrinsics.from_coeffs(
                    self.width,
                    self.height,
                    self.width / 2.0,
                    self.height / 2.0,
                    fx,
                    fy,
                    (0.08, -0.02, 0.001, -0.001, 0.0),
                ),
            )
        ys, xs = np.mgrid[0 : self.height, 0 : self.width]
        self._xs = xs.astype(np.float32)
        self._ys = ys.astype(np.float32)

    def update(self) -> None:
        super().update()
        if self.updates % self.frame_every:
            return
        self.clock += self.ticks_per_frame
        phase = self.clock / 10_000_000.0
        for sensor_index, kind in self.requested:
            if sensor_index >= self.sensors:
                continue
            self.push(kind, self._render(kind, phase), sensor_index)

    def _render(self, kind: StreamKind, phase: float) -> RawFrame:
        wave = 0.5 + 0.5 * np.sin(self._xs / 17.0 + self._ys / 23.0 + phase * 4.0)
        if kind is StreamKind.COLOR:
            pixels = np.empty((self.height, self.width, 4), np.uint8)
            pixels[..., 0] = (wave * 255).astype(np.uint8)
            pixels[..., 1] = (self._xs * 255 / max(self.width - 1, 1)).astype(np.uint8)
            pixels[..., 2] = (self._ys * 255 / max(self.height - 1, 1)).astype(np.uint8)
            pixels[..., 3] = 255
            fmt = PixelFormat.RGBA8
        elif kind is StreamKind.INFRARED:
            pixels = (wave * 4000).astype(np.uint16)
            fmt = PixelFormat.L16
        else:
            lo, hi = self.depth_range(0)
            meters = lo + (hi - lo) * wave
            pixels = (meters * 1000.0).astype(np.uint16)
            fmt = PixelFormat.Z16
        return RawFrame(self.width, self.height, self.clock, pixels, fmt)
