"""Per-stream acquisition and processing.

A :class:`StreamProcessor` turns raw sensor frames of one stream (color,
infrared or depth) into published :class:`~depthcam.frame.Frame` objects:

    raw -> [format conversion] -> [undistortion] -> [vertical flip] -> frame

Stages whose flag is off are skipped. With every flag off and a history of
one frame the raw buffer is wrapped without a copy. Working buffers and the
undistortion map are owned by the processor and sized before processing of a
frame begins; evicted history buffers are recycled as output storage.
"""

from __future__ import annotations

from typing import Callable, Dict, Tuple

import cv2
import numpy as np

from depthcam.formats import FormatConverter
from depthcam.frame import Frame, PixelFormat, RawFrame, StreamKind
from depthcam.history import FrameHistoryBuffer
from depthcam.intrinsics import CameraIntrinsics
from depthcam.provider import FrameProvider
from depthcam.stream_config import StreamConfig
from depthcam.undistort import UndistortionMap, UndistortionMapCache
from utils.error_tracker import (
    CalibrationError,
    FrameFormatError,
    ResourceExhaustedError,
)
from utils.logger import Logger, LoggerType
from utils.settings import DEVICE_TICKS_TO_SECONDS
from utils.settings import pipeline as PIPECFG

_COLOR_FORMATS = (
    PixelFormat.RGBA8,
    PixelFormat.BGRA8,
    PixelFormat.RGB8,
    PixelFormat.BGR8,
)
_INFRARED_FORMATS = (PixelFormat.L16,)
_DEPTH_FORMATS = (PixelFormat.Z16, PixelFormat.L16)

_RAW_FORMATS = {
    StreamKind.COLOR: _COLOR_FORMATS,
    StreamKind.INFRARED: _INFRARED_FORMATS,
    StreamKind.DEPTH: _DEPTH_FORMATS,
}

Allocator = Callable[[Tuple[int, ...], np.dtype], np.ndarray]


class StreamProcessor(FrameProvider):
    """Processes one stream of one sensor and keeps its frame history."""

    def __init__(
        self,
        kind: StreamKind,
        sensor_index: int = 0,
        converter: FormatConverter | None = None,
        logger: LoggerType | None = None,
        allocator: Allocator = np.empty,
    ) -> None:
        self.kind = StreamKind(kind)
        self.sensor_index = sensor_index
        self.label = f"{self.kind.label} ({sensor_index})"
        self.converter = converter or FormatConverter()
        self.logger = logger or Logger.for_stream("depthcam.processor", self.label)
        self._allocate = allocator
        self._maps = UndistortionMapCache(self.logger)
        self._history: FrameHistoryBuffer | None = None
        self._work: Dict[str, np.ndarray] = {}
        self._work_key: tuple | None = None
        self._spare: np.ndarray | None = None
        self._last_timestamp: int | None = None
        self._previous_timestamp: int | None = None
        self._sequence = 0
        self._depth_range: Tuple[float, float] | None = None
        self._frames_since_last_tick = 0

    # ------------------------------------------------------------------
    # FrameProvider
    def latest_frame(self) -> Frame | None:
        return self._history.latest() if self._history is not None else None

    def history_frame(self, index: int) -> Frame | None:
        return self._history.get(index) if self._history is not None else None

    @property
    def frame_count(self) -> int:
        return self._history.count() if self._history is not None else 0

    @property
    def latest_frame_interval(self) -> float:
        if self._last_timestamp is None or self._previous_timestamp is None:
            return 0.0
        ticks = self._last_timestamp - self._previous_timestamp
        return ticks * DEVICE_TICKS_TO_SECONDS

    @property
    def latest_frame_number(self) -> int:
        return self._sequence

    @property
    def frame_history_duration(self) -> float:
        return self._history.covered_duration() if self._history is not None else 0.0

    # ------------------------------------------------------------------
    @property
    def history(self) -> FrameHistoryBuffer | None:
        return self._history

    @property
    def undistortion_maps(self) -> UndistortionMapCache:
        return self._maps

    @property
    def last_accepted_timestamp(self) -> int | None:
        return self._last_timestamp

    @property
    def depth_range(self) -> Tuple[float, float] | None:
        """Distance bounds (meters) of the latest depth frame."""
        return self._depth_range

    @property
    def frames_since_last_tick(self) -> int:
        return self._frames_since_last_tick

    @property
    def frames_acquired_since_last_tick(self) -> int:
        # One frame is consumed per tick; older device frames are dropped.
        return self._frames_since_last_tick

    def reset_tick_counters(self) -> None:
        self._frames_since_last_tick = 0

    def advance(
        self,
        raw: RawFrame | None,
        intrinsics: CameraIntrinsics | None,
        config: StreamConfig,
        depth_range: Tuple[float, float] | None = None,
    ) -> Frame | None:
        """
        Process ``raw`` if it is new and return the published frame.

        Returns ``None`` when the frame was seen before, is malformed, or no
        frame is available. Only :class:`ResourceExhaustedError` propagates.
        """
        self._frames_since_last_tick = 0
        if config.kind is not self.kind:
            raise ValueError(f"{self.label}: config is for {config.kind.label} stream")
        if raw is None:
            return None
        if self._last_timestamp is not None and raw.timestamp == self._last_timestamp:
            return None

        try:
            self._check_raw(raw)
            if self.kind is StreamKind.DEPTH:
                depth_range = self._check_depth_range(depth_range)
        except FrameFormatError as e:
            self.logger.warning(f"[{self.label}] Skipping frame: {e}")
            return None

        if self._last_timestamp is not None and raw.timestamp < self._last_timestamp:
            self.logger.warning(
                f"[{self.label}] Device clock went back "
                f"({self._last_timestamp} -> {raw.timestamp}), history reset"
            )
            self._reset_history()

        self._ensure_history(config.history_capacity)

        undistort_map = None
        if config.undistort:
            undistort_map = self._undistortion_map(raw, intrinsics)

        convert = self.kind is StreamKind.DEPTH or config.convert_to_luminance
        out_format = self._output_format(raw.pixel_format, config)
        staged = convert or undistort_map is not None or config.flip_vertically
        two_pass = convert and (undistort_map is not None or config.flip_vertically)
        self._ensure_buffers(raw.width, raw.height, out_format, two_pass)

        if staged or self._history.capacity > 1:
            shape = out_format.shape(raw.width, raw.height)
            out = self._output_buffer(shape, out_format.dtype)
            owned = True
        else:
            out = raw.image()
            owned = False

        try:
            if owned:
                self._process(
                    raw, config, out, convert, undistort_map, depth_range
                )
        except cv2.error as e:
            self._spare = out
            self.logger.warning(f"[{self.label}] Processing failed, frame skipped: {e}")
            return None

        return self._accept(raw, out, out_format, owned, staged, depth_range)

    # ------------------------------------------------------------------
    def _check_raw(self, raw: RawFrame) -> None:
        if raw.pixel_format not in _RAW_FORMATS[self.kind]:
            raise FrameFormatError(
                f"unsupported {raw.pixel_format.value} input for "
                f"{self.kind.label} stream"
            )
        if not raw.is_well_formed():
            size = 0 if raw.pixels is None else raw.pixels.size
            raise FrameFormatError(
                f"buffer holds {size} values, expected {raw.expected_size} "
                f"for {raw.width}x{raw.height} {raw.pixel_format.value}"
            )

    def _check_depth_range(
        self, depth_range: Tuple[float, float] | None
    ) -> Tuple[float, float]:
        if depth_range is None:
            depth_range = (PIPECFG.min_depth_m, PIPECFG.max_depth_m)
        lo, hi = float(depth_range[0]), float(depth_range[1])
        if not hi > lo:
            raise FrameFormatError(f"invalid depth range [{lo}, {hi}]")
        return lo, hi

    def _output_format(
        self, raw_format: PixelFormat, config: StreamConfig
    ) -> PixelFormat:
        if self.kind is StreamKind.DEPTH:
            return PixelFormat.R32F
        if config.convert_to_luminance:
            return PixelFormat.L8
        if self.kind is StreamKind.INFRARED:
            return PixelFormat.L16
        return raw_format

    def _undistortion_map(
        self, raw: RawFrame, intrinsics: CameraIntrinsics | None
    ) -> UndistortionMap | None:
        try:
            return self._maps.get_or_build(raw.width, raw.height, intrinsics)
        except CalibrationError as e:
            self.logger.warning(
                f"[{self.label}] Undistortion disabled for this frame: {e}"
            )
            return None

    def _ensure_history(self, capacity: int) -> None:
        if self._history is not None and self._history.capacity == capacity:
            return
        if self._history is not None:
            self.logger.info(
                f"[{self.label}] History capacity {self._history.capacity} -> "
                f"{capacity}, retained frames discarded"
            )
        self._history = self._new_history(capacity)
        self._spare = None

    def _new_history(self, capacity: int) -> FrameHistoryBuffer:
        try:
            return FrameHistoryBuffer(capacity)
        except MemoryError as e:
            raise ResourceExhaustedError(
                f"{self.label}: cannot allocate history of {capacity} frames"
            ) from e

    def _reset_history(self) -> None:
        if self._history is not None:
            self._history = self._new_history(self._history.capacity)
        self._spare = None
        self._previous_timestamp = None
        self._last_timestamp = None

    def _ensure_buffers(
        self,
        width: int,
        height: int,
        out_format: PixelFormat,
        needs_convert_buffer: bool,
    ) -> None:
        """Resize working buffers when resolution or format changed."""
        key = (width, height, out_format, needs_convert_buffer)
        if key == self._work_key:
            return
        if self._work_key is not None:
            self.logger.debug(
                f"[{self.label}] Reallocating working buffers for "
                f"{width}x{height} {out_format.value}"
            )
        self._work = {}
        if self._spare is not None and (
            self._spare.shape != out_format.shape(width, height)
            or self._spare.dtype != out_format.dtype
        ):
            self._spare = None
        if needs_convert_buffer:
            self._work["convert"] = self._alloc(
                out_format.shape(width, height), out_format.dtype
            )
        self._work_key = key

    def _alloc(self, shape: Tuple[int, ...], dtype: np.dtype) -> np.ndarray:
        try:
            return self._allocate(shape, dtype)
        except MemoryError as e:
            raise ResourceExhaustedError(
                f"{self.label}: cannot allocate {shape} {np.dtype(dtype).name} buffer"
            ) from e

    def _output_buffer(self, shape: Tuple[int, ...], dtype: np.dtype) -> np.ndarray:
        spare, self._spare = self._spare, None
        if spare is not None and spare.shape == shape and spare.dtype == dtype:
            return spare
        return self._alloc(shape, dtype)

    def _process(
        self,
        raw: RawFrame,
        config: StreamConfig,
        out: np.ndarray,
        convert: bool,
        undistort_map: UndistortionMap | None,
        depth_range: Tuple[float, float] | None,
    ) -> None:
        image = raw.image()
        flip = config.flip_vertically
        if convert:
            last = undistort_map is None and not flip
            target = out if last else self._work["convert"]
            self._convert(raw, image, config, depth_range, target)
            image = target
        if undistort_map is not None:
            interpolation = (
                cv2.INTER_NEAREST if self.kind is StreamKind.DEPTH else cv2.INTER_LINEAR
            )
            undistort_map.apply(image, out, interpolation, flip_vertically=flip)
        elif flip:
            self.converter.flip_vertical(image, out)
        elif not convert:
            self.converter.copy(image, out)

    def _convert(
        self,
        raw: RawFrame,
        image: np.ndarray,
        config: StreamConfig,
        depth_range: Tuple[float, float] | None,
        target: np.ndarray,
    ) -> None:
        if self.kind is StreamKind.DEPTH:
            lo, hi = depth_range
            self.converter.normalize_depth(image, lo, hi, raw.depth_scale, target)
        elif self.kind is StreamKind.INFRARED:
            self.converter.scale_16_to_8(image, config.infrared_scale, target)
        else:
            self.converter.to_luminance(image, raw.pixel_format, target)

    def _accept(
        self,
        raw: RawFrame,
        pixels: np.ndarray,
        out_format: PixelFormat,
        owned: bool,
        staged: bool,
        depth_range: Tuple[float, float] | None,
    ) -> Frame:
        self._previous_timestamp = self._last_timestamp
        self._last_timestamp = raw.timestamp
        self._sequence += 1
        suffix = "Processed" if staged else ""
        frame = Frame(
            pixels=pixels,
            pixel_format=out_format,
            timestamp=raw.timestamp,
            sequence_number=self._sequence,
            interval_seconds=self.latest_frame_interval,
            name=f"{self.kind.label}{suffix} ({self.sensor_index})",
            depth_range=depth_range if self.kind is StreamKind.DEPTH else None,
            owns_buffer=owned,
        )
        evicted = self._history.insert(frame)
        if evicted is not None and evicted.owns_buffer:
            self._spare = evicted.pixels
        if self.kind is StreamKind.DEPTH:
            self._depth_range = depth_range
        self._frames_since_last_tick = 1
        return frame

    def release(self) -> None:
        """Drop history, working buffers and the undistortion map."""
        self._history = None
        self._work = {}
        self._work_key = None
        self._spare = None
        self._maps.clear()
        self._frames_since_last_tick = 0
