"""Tick-driven facade driving one stream processor per configured stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from depthcam.camera.sensor_base import SensorSource
from depthcam.formats import FormatConverter
from depthcam.frame import Frame, StreamKind
from depthcam.processor import Allocator, StreamProcessor
from depthcam.stream_config import StreamConfig
from utils.error_tracker import ResourceExhaustedError
from utils.logger import Logger, LoggerType

FrameListener = Callable[[str, Frame], None]
DepthRangeListener = Callable[[str, Tuple[float, float]], None]


class StreamState(str, Enum):
    """Lifecycle of a configured stream: ``DISABLED -> IDLE <-> ACTIVE``."""

    DISABLED = "disabled"
    IDLE = "idle"
    ACTIVE = "active"


@dataclass
class _Stream:
    name: str
    config: StreamConfig
    processor: StreamProcessor
    enabled: bool
    state: StreamState
    out_of_range: bool = False
    published_range: Tuple[float, float] | None = None


@dataclass
class TickResult:
    """Outcome of one :meth:`FramePipeline.advance` call."""

    produced: Dict[str, bool] = field(default_factory=dict)
    frames: Dict[str, Frame] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def frames_since_last_tick(self) -> int:
        return sum(1 for v in self.produced.values() if v)

    @property
    def frames_acquired_since_last_tick(self) -> int:
        return len(self.frames)


class FramePipeline:
    """
    Owns the stream processors and drives them once per external tick.

    Each :meth:`advance` pulls the newest frames from the sensor collaborator
    itself, so no outside ordering between the device and the pipeline is
    needed. Accepted frames are published to frame listeners in the same
    call; depth streams also notify depth range listeners when the distance
    bounds change.
    """

    def __init__(
        self,
        sensor: SensorSource | None = None,
        converter: FormatConverter | None = None,
        logger: LoggerType | None = None,
        allocator: Allocator = np.empty,
    ) -> None:
        self.sensor = sensor
        self.logger = logger or Logger.get_logger("depthcam.pipeline")
        self.converter = converter or FormatConverter(self.logger)
        self._allocator = allocator
        self._streams: Dict[str, _Stream] = {}
        self._frame_listeners: List[Tuple[Optional[str], FrameListener]] = []
        self._range_listeners: List[Tuple[Optional[str], DepthRangeListener]] = []
        self._last_result = TickResult()

    # ------------------------------------------------------------------
    # Stream management
    def add_stream(
        self, name: str, config: StreamConfig, enabled: bool = True
    ) -> StreamProcessor:
        """Register a stream and return its processor (a frame provider)."""
        if name in self._streams:
            raise ValueError(f"Stream '{name}' already configured")
        processor = StreamProcessor(
            config.kind,
            config.sensor_index,
            converter=self.converter,
            allocator=self._allocator,
            logger=Logger.for_stream(
                "depthcam.processor", f"{config.kind.label} ({config.sensor_index})"
            ),
        )
        state = StreamState.IDLE if enabled else StreamState.DISABLED
        self._streams[name] = _Stream(name, config, processor, enabled, state)
        self.logger.info(
            f"Stream '{name}' added: {config.kind.label} sensor {config.sensor_index}, "
            f"undistort={config.undistort}, flip={config.flip_vertically}, "
            f"luminance={config.convert_to_luminance}, "
            f"history={config.history_capacity}"
        )
        return processor

    def add_streams(self, configs: Dict[str, StreamConfig]) -> None:
        for name, config in configs.items():
            self.add_stream(name, config)

    def remove_stream(self, name: str) -> None:
        """Tear the stream down and release everything it owns."""
        stream = self._streams.pop(self._require(name).name)
        stream.processor.release()
        self._frame_listeners = [e for e in self._frame_listeners if e[0] != name]
        self._range_listeners = [e for e in self._range_listeners if e[0] != name]
        self.logger.info(f"Stream '{name}' removed")

    def set_enabled(self, name: str, enabled: bool) -> None:
        """
        Enable or disable a stream from the next tick on.

        A disabled stream keeps its last frame and history (``IDLE``).
        """
        stream = self._require(name)
        stream.enabled = enabled
        if enabled:
            if stream.state is StreamState.DISABLED:
                stream.state = StreamState.IDLE
        else:
            if stream.state is StreamState.ACTIVE:
                stream.state = StreamState.IDLE
            stream.processor.reset_tick_counters()

    def set_history_capacity(self, name: str, capacity: int) -> None:
        """Resize a stream's history; retained frames are discarded."""
        stream = self._require(name)
        stream.config = stream.config.with_history_capacity(capacity)

    def stream_state(self, name: str) -> StreamState:
        return self._require(name).state

    def stream_config(self, name: str) -> StreamConfig:
        return self._require(name).config

    def processor(self, name: str) -> StreamProcessor:
        return self._require(name).processor

    @property
    def stream_names(self) -> List[str]:
        return list(self._streams)

    def _require(self, name: str) -> _Stream:
        try:
            return self._streams[name]
        except KeyError:
            raise KeyError(f"Unknown stream '{name}'") from None

    # ------------------------------------------------------------------
    # Observers
    def add_frame_listener(
        self, listener: FrameListener, stream: str | None = None
    ) -> None:
        """Call ``listener(name, frame)`` for each accepted frame."""
        self._frame_listeners.append((stream, listener))

    def remove_frame_listener(self, listener: FrameListener) -> None:
        self._frame_listeners = [
            e for e in self._frame_listeners if e[1] != listener
        ]

    def add_depth_range_listener(
        self, listener: DepthRangeListener, stream: str | None = None
    ) -> None:
        """Call ``listener(name, (min, max))`` whenever a depth range changes."""
        self._range_listeners.append((stream, listener))

    def remove_depth_range_listener(self, listener: DepthRangeListener) -> None:
        self._range_listeners = [
            e for e in self._range_listeners if e[1] != listener
        ]

    # ------------------------------------------------------------------
    # Tick
    @property
    def last_result(self) -> TickResult:
        return self._last_result

    @property
    def frames_since_last_tick(self) -> int:
        return self._last_result.frames_since_last_tick

    @property
    def frames_acquired_since_last_tick(self) -> int:
        return self._last_result.frames_acquired_since_last_tick

    def advance(self) -> TickResult:
        """
        Run one tick over all enabled streams.

        Does nothing while the sensor is absent or not initialized. Raises
        :class:`ResourceExhaustedError` after the tick if a stream could not
        allocate its buffers; that stream is moved to ``DISABLED``.
        """
        result = TickResult()
        self._last_result = result
        sensor = self.sensor
        if sensor is None or not sensor.is_initialized():
            for stream in self._streams.values():
                stream.processor.reset_tick_counters()
            return result

        ready = self._ready_streams(sensor, result)
        sensor.update()

        failures: List[ResourceExhaustedError] = []
        for stream in ready:
            stream.state = StreamState.ACTIVE
            try:
                frame = self._advance_stream(sensor, stream)
            except ResourceExhaustedError as e:
                self.logger.error(f"Stream '{stream.name}' disabled: {e}")
                stream.state = StreamState.DISABLED
                stream.enabled = False
                stream.processor.release()
                result.produced[stream.name] = False
                failures.append(e)
                continue
            result.produced[stream.name] = frame is not None
            if frame is not None:
                result.frames[stream.name] = frame
                self._publish(stream, frame)

        if failures:
            raise failures[0]
        return result

    def _ready_streams(
        self, sensor: SensorSource, result: TickResult
    ) -> List[_Stream]:
        count = sensor.sensor_count()
        ready = []
        for stream in self._streams.values():
            if not stream.enabled or stream.state is StreamState.DISABLED:
                continue
            index = stream.config.sensor_index
            if index >= count:
                if not stream.out_of_range:
                    self.logger.warning(
                        f"[{stream.processor.label}] Sensor index {index} out of "
                        f"range, {count} sensor(s) connected"
                    )
                stream.out_of_range = True
                stream.processor.reset_tick_counters()
                result.skipped.append(stream.name)
                continue
            if stream.out_of_range:
                self.logger.info(f"[{stream.processor.label}] Sensor available again")
                stream.out_of_range = False
            sensor.ensure_stream(index, stream.config.kind)
            ready.append(stream)
        return ready

    def _advance_stream(self, sensor: SensorSource, stream: _Stream) -> Frame | None:
        config = stream.config
        index = config.sensor_index
        raw = sensor.latest_frame(index, config.kind)
        intrinsics = sensor.intrinsics(index, config.kind) if config.undistort else None
        depth_range = (
            sensor.depth_range(index) if config.kind is StreamKind.DEPTH else None
        )
        return stream.processor.advance(raw, intrinsics, config, depth_range)

    def _publish(self, stream: _Stream, frame: Frame) -> None:
        for target, listener in list(self._frame_listeners):
            if target is None or target == stream.name:
                listener(stream.name, frame)
        depth_range = frame.depth_range
        if depth_range is not None and depth_range != stream.published_range:
            stream.published_range = depth_range
            for target, listener in list(self._range_listeners):
                if target is None or target == stream.name:
                    listener(stream.name, depth_range)

    # ------------------------------------------------------------------
    def close(self) -> None:
        """Tear down every stream."""
        for name in list(self._streams):
            self.remove_stream(name)

    def __enter__(self) -> "FramePipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def providers(self) -> Iterable[Tuple[str, StreamProcessor]]:
        return ((name, s.processor) for name, s in self._streams.items())
