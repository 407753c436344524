import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from loguru import logger as loguru_logger

from depthcam.camera import StubSensor, SyntheticSensor
from depthcam.frame import PixelFormat, RawFrame, StreamKind
from depthcam.intrinsics import CameraIntrinsics
from depthcam.pipeline import FramePipeline, StreamState
from depthcam.stream_config import StreamConfig
from utils.error_tracker import ResourceExhaustedError
from utils.logger import Logger

W, H = 8, 6


def color_raw(ts: int) -> RawFrame:
    return RawFrame(W, H, ts, np.zeros(W * H * 4, np.uint8), PixelFormat.RGBA8)


def depth_raw(ts: int) -> RawFrame:
    return RawFrame(W, H, ts, np.full(W * H, 1000, np.uint16), PixelFormat.Z16)


@pytest.fixture
def warnings_log():
    Logger.get_logger("tests")
    records = []
    sink_id = loguru_logger.add(
        lambda message: records.append(message.record), level="WARNING"
    )
    yield records
    loguru_logger.remove(sink_id)


@pytest.fixture
def sensor() -> StubSensor:
    return StubSensor()


@pytest.fixture
def pipeline(sensor: StubSensor) -> FramePipeline:
    pipe = FramePipeline(sensor)
    pipe.add_stream("color", StreamConfig(StreamKind.COLOR))
    pipe.add_stream("depth", StreamConfig(StreamKind.DEPTH, history_capacity=2))
    return pipe


def test_uninitialized_sensor_is_a_no_op(sensor, pipeline) -> None:
    sensor.initialized = False
    sensor.push(StreamKind.COLOR, color_raw(1))
    result = pipeline.advance()
    assert result.frames == {}
    assert sensor.updates == 0
    assert pipeline.stream_state("color") is StreamState.IDLE
    assert pipeline.processor("color").latest_frame() is None


def test_missing_sensor_is_a_no_op() -> None:
    pipe = FramePipeline()
    pipe.add_stream("color", StreamConfig())
    assert pipe.advance().frames == {}
    assert pipe.frames_since_last_tick == 0


def test_tick_produces_frames_and_requests_streams(sensor, pipeline) -> None:
    sensor.push(StreamKind.COLOR, color_raw(1))
    sensor.push(StreamKind.DEPTH, depth_raw(1))
    result = pipeline.advance()
    assert set(result.frames) == {"color", "depth"}
    assert result.produced == {"color": True, "depth": True}
    assert sensor.requested == {(0, StreamKind.COLOR), (0, StreamKind.DEPTH)}
    assert sensor.updates == 1
    assert pipeline.stream_state("color") is StreamState.ACTIVE
    assert pipeline.frames_since_last_tick == 2
    assert pipeline.frames_acquired_since_last_tick == 2

    result = pipeline.advance()
    assert result.produced == {"color": False, "depth": False}
    assert pipeline.frames_since_last_tick == 0
    assert pipeline.processor("color").frames_since_last_tick == 0


def test_sensor_index_out_of_range_is_skipped(sensor) -> None:
    pipe = FramePipeline(sensor)
    pipe.add_stream("second", StreamConfig(sensor_index=1))
    pipe.add_stream("first", StreamConfig(sensor_index=0))
    sensor.push(StreamKind.COLOR, color_raw(1))
    result = pipe.advance()
    assert result.skipped == ["second"]
    assert set(result.frames) == {"first"}
    assert pipe.stream_state("second") is StreamState.IDLE
    assert (1, StreamKind.COLOR) not in sensor.requested

    sensor.sensors = 2
    sensor.push(StreamKind.COLOR, color_raw(5), sensor_index=1)
    result = pipe.advance()
    assert result.skipped == []
    assert result.frames["second"].timestamp == 5


def test_out_of_range_warning_names_stream_once_per_transition(
    sensor, warnings_log
) -> None:
    pipe = FramePipeline(sensor)
    pipe.add_stream("second", StreamConfig(sensor_index=1))
    for _ in range(3):
        pipe.advance()
    sensor.sensors = 2
    pipe.advance()
    sensor.sensors = 1
    pipe.advance()
    pipe.advance()
    messages = [r["message"] for r in warnings_log if "out of range" in r["message"]]
    assert len(messages) == 2
    assert all(m.startswith("[Color (1)] Sensor index 1") for m in messages)


def test_invalid_calibration_warning_names_stream(sensor, warnings_log) -> None:
    pipe = FramePipeline(sensor)
    pipe.add_stream("color", StreamConfig(undistort=True))
    sensor.set_intrinsics(
        StreamKind.COLOR, CameraIntrinsics(W, H, W / 2, H / 2, 0.0, 0.0)
    )
    sensor.push(StreamKind.COLOR, color_raw(1))
    frame = pipe.advance().frames["color"]
    assert frame.name == "Color (0)"
    [record] = [r for r in warnings_log if "Undistortion disabled" in r["message"]]
    assert record["message"].startswith("[Color (0)]")
    assert record["extra"]["stream"] == "Color (0)"
    assert record["level"].name == "WARNING"


def test_state_transitions(sensor) -> None:
    pipe = FramePipeline(sensor)
    pipe.add_stream("color", StreamConfig())
    pipe.add_stream("ir", StreamConfig(StreamKind.INFRARED), enabled=False)
    assert pipe.stream_state("color") is StreamState.IDLE
    assert pipe.stream_state("ir") is StreamState.DISABLED

    sensor.push(StreamKind.COLOR, color_raw(1))
    pipe.advance()
    assert pipe.stream_state("color") is StreamState.ACTIVE
    assert pipe.stream_state("ir") is StreamState.DISABLED

    pipe.set_enabled("color", False)
    assert pipe.stream_state("color") is StreamState.IDLE
    sensor.push(StreamKind.COLOR, color_raw(2))
    assert "color" not in pipe.advance().frames
    # retained while disabled
    assert pipe.processor("color").latest_frame().timestamp == 1

    pipe.set_enabled("color", True)
    pipe.set_enabled("ir", True)
    assert pipe.stream_state("ir") is StreamState.IDLE
    assert pipe.advance().frames["color"].timestamp == 2


def test_duplicate_and_unknown_streams(pipeline) -> None:
    with pytest.raises(ValueError):
        pipeline.add_stream("color", StreamConfig())
    with pytest.raises(KeyError):
        pipeline.stream_state("nope")


def test_frame_listeners(sensor, pipeline) -> None:
    seen = []
    depth_only = []
    pipeline.add_frame_listener(lambda name, frame: seen.append((name, frame)))
    pipeline.add_frame_listener(
        lambda name, frame: depth_only.append(frame.timestamp), stream="depth"
    )
    sensor.push(StreamKind.COLOR, color_raw(1))
    sensor.push(StreamKind.DEPTH, depth_raw(1))
    pipeline.advance()
    pipeline.advance()
    assert sorted(name for name, _ in seen) == ["color", "depth"]
    assert depth_only == [1]


def test_removed_frame_listener_is_not_called(sensor, pipeline) -> None:
    calls = []

    def on_frame(name, frame):
        calls.append(frame.timestamp)

    pipeline.add_frame_listener(on_frame)
    sensor.push(StreamKind.COLOR, color_raw(1))
    pipeline.advance()
    pipeline.remove_frame_listener(on_frame)
    sensor.push(StreamKind.COLOR, color_raw(2))
    assert pipeline.advance().frames["color"].timestamp == 2
    assert calls == [1]


def test_depth_range_listener_fires_on_change_only(sensor, pipeline) -> None:
    ranges = []

    def on_range(name, depth_range):
        ranges.append((name, depth_range))

    pipeline.add_depth_range_listener(on_range)
    sensor.set_depth_range(0.5, 5.0)
    for ts in (1, 2):
        sensor.push(StreamKind.DEPTH, depth_raw(ts))
        pipeline.advance()
    sensor.set_depth_range(0.3, 4.0)
    sensor.push(StreamKind.DEPTH, depth_raw(3))
    result = pipeline.advance()
    assert ranges == [("depth", (0.5, 5.0)), ("depth", (0.3, 4.0))]
    assert result.frames["depth"].depth_range == (0.3, 4.0)

    pipeline.remove_depth_range_listener(on_range)
    sensor.set_depth_range(1.0, 2.0)
    sensor.push(StreamKind.DEPTH, depth_raw(4))
    pipeline.advance()
    assert len(ranges) == 2


def test_remove_stream_releases_processor(sensor, pipeline) -> None:
    calls = []
    pipeline.add_frame_listener(lambda n, f: calls.append(n), stream="depth")
    sensor.push(StreamKind.DEPTH, depth_raw(1))
    pipeline.advance()
    processor = pipeline.processor("depth")
    pipeline.remove_stream("depth")
    assert processor.history is None
    assert pipeline.stream_names == ["color"]
    pipeline.add_stream("depth", StreamConfig(StreamKind.DEPTH))
    sensor.push(StreamKind.DEPTH, depth_raw(2))
    pipeline.advance()
    assert calls == ["depth"]


def test_history_capacity_change(sensor, pipeline) -> None:
    for ts in (1, 2):
        sensor.push(StreamKind.DEPTH, depth_raw(ts))
        pipeline.advance()
    assert pipeline.processor("depth").frame_count == 2
    pipeline.set_history_capacity("depth", 4)
    sensor.push(StreamKind.DEPTH, depth_raw(3))
    pipeline.advance()
    assert pipeline.processor("depth").frame_count == 1
    assert pipeline.stream_config("depth").history_capacity == 4


def test_allocation_failure_disables_stream(sensor) -> None:
    def float_alloc_fails(shape, dtype):
        if np.dtype(dtype) == np.float32:
            raise MemoryError
        return np.empty(shape, dtype)

    pipe = FramePipeline(sensor, allocator=float_alloc_fails)
    pipe.add_stream("depth", StreamConfig(StreamKind.DEPTH))
    pipe.add_stream("color", StreamConfig(history_capacity=2))
    sensor.push(StreamKind.DEPTH, depth_raw(1))
    sensor.push(StreamKind.COLOR, color_raw(1))
    with pytest.raises(ResourceExhaustedError):
        pipe.advance()
    assert pipe.stream_state("depth") is StreamState.DISABLED
    assert pipe.last_result.produced["depth"] is False
    assert "color" in pipe.last_result.frames

    sensor.push(StreamKind.COLOR, color_raw(2))
    result = pipe.advance()
    assert "depth" not in result.produced
    assert result.frames["color"].timestamp == 2


def test_close_tears_down_everything(pipeline) -> None:
    with pipeline as pipe:
        assert len(list(pipe.providers())) == 2
    assert pipeline.stream_names == []


def test_synthetic_sensor_drives_all_streams() -> None:
    sensor = SyntheticSensor(width=64, height=48)
    pipe = FramePipeline(sensor)
    pipe.add_streams(
        {
            "color": StreamConfig(StreamKind.COLOR, undistort=True),
            "ir": StreamConfig(
                StreamKind.INFRARED, convert_to_luminance=True, infrared_scale=4.0
            ),
            "depth": StreamConfig(StreamKind.DEPTH, undistort=True, history_capacity=3),
        }
    )
    for _ in range(4):
        result = pipe.advance()
        assert set(result.frames) == {"color", "ir", "depth"}
    depth = pipe.processor("depth")
    assert depth.frame_count == 3
    assert depth.latest_frame_number == 4
    assert depth.frame_history_duration == pytest.approx(2 * 0.0333333)
    assert result.frames["ir"].pixel_format is PixelFormat.L8
    assert result.frames["color"].pixels.shape == (48, 64, 4)


def test_slow_synthetic_sensor_repeats_are_ignored() -> None:
    sensor = SyntheticSensor(width=32, height=24, frame_every=2)
    pipe = FramePipeline(sensor)
    pipe.add_stream("color", StreamConfig())
    produced = [bool(pipe.advance().frames) for _ in range(6)]
    assert produced == [False, True, False, True, False, True]
    assert pipe.processor("color").latest_frame_number == 3
