# depthcam/camera/realsense.py

"""Intel RealSense devices as a pipeline sensor source.

Streams color (RGBA8), infrared (Y8 of the left imager, widened to 16 bit)
and depth (Z16) from every connected device. Frame timestamps are converted
from librealsense milliseconds into device ticks, and each
:meth:`RealSenseSource.update` keeps only the newest frameset per device.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Set, Tuple

import numpy as np
import pyrealsense2 as rs

from depthcam.frame import PixelFormat, RawFrame, StreamKind
from depthcam.intrinsics import CameraIntrinsics
from utils.error_tracker import CameraConnectionError, ErrorTracker
from utils.logger import CaptureStderrToLogger, Logger, LoggerType
from utils.settings import DEVICE_TICKS_TO_SECONDS, RealSenseCfg
from utils.settings import pipeline as PIPECFG
from utils.settings import realsense as RSCFG
from .sensor_base import SensorSource, optic_for

_MS_TO_TICKS = 0.001 / DEVICE_TICKS_TO_SECONDS

# Any stream index of a type; infrared uses the left imager.
_ANY = -1
_LEFT_IR = 1


def intrinsics_sources(
    streams: Iterable[StreamKind],
) -> List[Tuple[StreamKind, "rs.stream", int]]:
    """
    Profile to read each optic's intrinsics from.

    The depth optic is read from the depth stream, or from the left infrared
    stream when depth is not enabled.
    """
    enabled = set(streams)
    sources = []
    if StreamKind.COLOR in enabled:
        sources.append((StreamKind.COLOR, rs.stream.color, _ANY))
    if StreamKind.DEPTH in enabled:
        sources.append((StreamKind.DEPTH, rs.stream.depth, _ANY))
    elif StreamKind.INFRARED in enabled:
        sources.append((StreamKind.DEPTH, rs.stream.infrared, _LEFT_IR))
    return sources


def widen_infrared(raw: RawFrame) -> RawFrame:
    """Y8 infrared to the L16 layout the pipeline expects (value << 8)."""
    pixels = raw.pixels.astype(np.uint16) << 8
    return replace(raw, pixels=pixels, pixel_format=PixelFormat.L16)


class _Device:
    """Pipeline and latest frames of one physical camera."""

    def __init__(self, serial: str) -> None:
        self.serial = serial
        self.pipeline = rs.pipeline()
        self.profile: rs.pipeline_profile | None = None
        self.depth_scale: float = RSCFG.depth_units
        self.frames: Dict[StreamKind, RawFrame] = {}
        self.intrinsics: Dict[StreamKind, CameraIntrinsics] = {}


class RealSenseSource(SensorSource):  # type: ignore[misc]
    """
    Unified sensor source over all connected RealSense cameras.
    Sensor indices follow the order librealsense enumerates devices in.
    """

    def __init__(
        self,
        cfg: RealSenseCfg | None = None,
        streams: Iterable[StreamKind] = tuple(StreamKind),
        depth_range: Tuple[float, float] = (PIPECFG.min_depth_m, PIPECFG.max_depth_m),
        logger: LoggerType | None = None,
    ) -> None:
        self.cfg = cfg or RSCFG
        self.streams = {StreamKind(s) for s in streams}
        self._depth_range = depth_range
        self.logger = logger or Logger.get_logger("depthcam.realsense")
        self._devices: List[_Device] = []
        self._missing: Set[StreamKind] = set()
        self.started = False

    def _stream_config(self, serial: str) -> rs.config:
        cfg = self.cfg
        config = rs.config()
        config.enable_device(serial)
        if StreamKind.COLOR in self.streams:
            config.enable_stream(
                rs.stream.color,
                cfg.color_width,
                cfg.color_height,
                rs.format.rgba8,
                cfg.fps,
            )
        if StreamKind.DEPTH in self.streams:
            config.enable_stream(
                rs.stream.depth,
                cfg.depth_width,
                cfg.depth_height,
                rs.format.z16,
                cfg.fps,
            )
        if StreamKind.INFRARED in self.streams:
            config.enable_stream(
                rs.stream.infrared,
                _LEFT_IR,
                cfg.depth_width,
                cfg.depth_height,
                rs.format.y8,
                cfg.fps,
            )
        return config

    def start(self) -> None:
        """Open every connected device and apply the depth sensor options."""
        try:
            with CaptureStderrToLogger(self.logger):
                serials = [
                    d.get_info(rs.camera_info.serial_number)
                    for d in rs.context().query_devices()
                ]
                if not serials:
                    raise RuntimeError("No RealSense device connected")
                for serial in serials:
                    self._devices.append(self._start_device(serial))
        except Exception as e:
            self.logger.error(f"Failed to start RealSense pipeline: {e}")
            self.stop()
            raise CameraConnectionError(str(e)) from e
        self.started = True
        ErrorTracker.register_cleanup(self.stop)

    def _start_device(self, serial: str) -> _Device:
        device = _Device(serial)
        device.profile = device.pipeline.start(self._stream_config(serial))
        dev = device.profile.get_device()
        depth_sensor = dev.first_depth_sensor()
        try:
            depth_sensor.set_option(rs.option.depth_units, self.cfg.depth_units)
        except Exception as e:
            self.logger.warning(f"Failed to set depth units on {serial}: {e}")
        device.depth_scale = float(depth_sensor.get_option(rs.option.depth_units))
        if depth_sensor.supports(rs.option.emitter_enabled):
            depth_sensor.set_option(
                rs.option.emitter_enabled, 1 if self.cfg.emitter_enabled else 0
            )
        for optic, stream, index in intrinsics_sources(self.streams):
            intr = device.profile.get_stream(stream, index).as_video_stream_profile()
            device.intrinsics[optic] = self._to_intrinsics(intr.get_intrinsics())
        name = dev.get_info(rs.camera_info.name)
        self.logger.info(
            f"Device: {name} SN:{serial} depth scale {device.depth_scale:.6f} m/unit"
        )
        return device

    @staticmethod
    def _to_intrinsics(intr: rs.intrinsics) -> CameraIntrinsics:
        return CameraIntrinsics.from_coeffs(
            intr.width, intr.height, intr.ppx, intr.ppy, intr.fx, intr.fy, intr.coeffs
        )

    def stop(self) -> None:
        """Stop streaming and release resources."""
        for device in self._devices:
            if device.profile is not None:
                device.pipeline.stop()
                device.profile = None
        self._devices = []
        if self.started:
            ErrorTracker.unregister_cleanup(self.stop)
        self.started = False

    # ------------------------------------------------------------------
    def is_initialized(self) -> bool:
        return self.started

    def sensor_count(self) -> int:
        return len(self._devices)

    def ensure_stream(self, sensor_index: int, kind: StreamKind) -> None:
        if kind not in self.streams and kind not in self._missing:
            self._missing.add(kind)
            self.logger.warning(
                f"{kind.label} stream requested but not enabled at start; "
                "restart the source with it included"
            )

    def update(self) -> None:
        for device in self._devices:
            latest = None
            while True:
                frames = device.pipeline.poll_for_frames()
                if not frames:
                    break
                latest = frames
            if latest is not None:
                self._store(device, latest)

    def _store(self, device: _Device, frames: rs.composite_frame) -> None:
        if StreamKind.COLOR in self.streams:
            color = frames.get_color_frame()
            if color:
                device.frames[StreamKind.COLOR] = self._to_raw(
                    color, PixelFormat.RGBA8, device.depth_scale
                )
        if StreamKind.DEPTH in self.streams:
            depth = frames.get_depth_frame()
            if depth:
                device.frames[StreamKind.DEPTH] = self._to_raw(
                    depth, PixelFormat.Z16, device.depth_scale
                )
        if StreamKind.INFRARED in self.streams:
            ir = frames.get_infrared_frame(_LEFT_IR)
            if ir:
                raw = self._to_raw(ir, PixelFormat.L8, device.depth_scale)
                device.frames[StreamKind.INFRARED] = widen_infrared(raw)

    @staticmethod
    def _to_raw(
        frame: rs.video_frame, pixel_format: PixelFormat, depth_scale: float
    ) -> RawFrame:
        pixels = np.asanyarray(frame.get_data())
        return RawFrame(
            width=frame.get_width(),
            height=frame.get_height(),
            timestamp=int(round(frame.get_timestamp() * _MS_TO_TICKS)),
            pixels=pixels,
            pixel_format=pixel_format,
            depth_scale=depth_scale,
        )

    def latest_frame(self, sensor_index: int, kind: StreamKind) -> RawFrame | None:
        if sensor_index >= len(self._devices):
            return None
        return self._devices[sensor_index].frames.get(kind)

    def intrinsics(
        self, sensor_index: int, kind: StreamKind
    ) -> CameraIntrinsics | None:
        if sensor_index >= len(self._devices):
            return None
        return self._devices[sensor_index].intrinsics.get(optic_for(kind))

    def depth_range(self, sensor_index: int) -> Tuple[float, float]:
        return self._depth_range

    def describe(self) -> Dict[str, Dict[str, CameraIntrinsics]]:
        """Intrinsics of every started device keyed by serial number."""
        return {
            d.serial: {k.value: v for k, v in d.intrinsics.items()}
            for d in self._devices
        }
