# cli/stream_view.py
"""Run the frame pipeline on a RealSense device or a synthetic sensor."""

from __future__ import annotations

import argparse
import time
from typing import Dict, Tuple

import cv2
import numpy as np

from depthcam.camera import SensorSource, SyntheticSensor
from depthcam.frame import Frame, PixelFormat
from depthcam.pipeline import FramePipeline
from depthcam.stream_config import StreamConfig
from utils.cli import Command, CommandDispatcher
from utils.config import Config
from utils.logger import Logger, LoggerType
from utils.settings import pipeline as PIPECFG

_TO_BGR = {
    PixelFormat.RGBA8: cv2.COLOR_RGBA2BGR,
    PixelFormat.BGRA8: cv2.COLOR_BGRA2BGR,
    PixelFormat.RGB8: cv2.COLOR_RGB2BGR,
}


def to_display(frame: Frame) -> np.ndarray:
    """Convert a published frame into an 8 bit BGR image for ``imshow``."""
    pixels = frame.pixels
    if frame.pixel_format is PixelFormat.R32F:
        depth8 = (np.clip(pixels, 0.0, 1.0) * 255).astype(np.uint8)
        return cv2.applyColorMap(depth8, cv2.COLORMAP_JET)
    if frame.pixel_format in (PixelFormat.L16, PixelFormat.Z16):
        return cv2.normalize(pixels, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    code = _TO_BGR.get(frame.pixel_format)
    return cv2.cvtColor(pixels, code) if code is not None else pixels


class StreamViewCLI:
    """Drives a :class:`FramePipeline` at a fixed tick rate."""

    def __init__(
        self,
        sensor: SensorSource,
        streams: Dict[str, StreamConfig],
        tick_rate_hz: float = PIPECFG.tick_rate_hz,
        logger: LoggerType | None = None,
    ) -> None:
        self.sensor = sensor
        self.streams = streams
        self.tick_period = 1.0 / tick_rate_hz if tick_rate_hz > 0 else 0.0
        self.logger = logger or Logger.get_logger("cli.stream_view")
        self.pipeline = FramePipeline(sensor)
        self.pipeline.add_streams(streams)
        self.pipeline.add_depth_range_listener(self._on_depth_range)

    def _on_depth_range(self, name: str, depth_range: Tuple[float, float]) -> None:
        self.logger.info(
            f"'{name}' depth range {depth_range[0]:.2f}-{depth_range[1]:.2f} m"
        )

    def _sleep_until(self, start: float) -> None:
        remaining = self.tick_period - (time.perf_counter() - start)
        if remaining > 0:
            time.sleep(remaining)

    def view(self) -> None:
        """Show every published frame until ESC is pressed."""
        try:
            while True:
                start = time.perf_counter()
                result = self.pipeline.advance()
                for name, frame in result.frames.items():
                    cv2.imshow(name, to_display(frame))
                if cv2.waitKey(1) & 0xFF == 27:
                    break
                self._sleep_until(start)
        finally:
            self.pipeline.close()
            cv2.destroyAllWindows()

    def bench(self, ticks: int) -> Dict[str, int]:
        """Run ``ticks`` headless ticks and return accepted frames per stream."""
        accepted = {name: 0 for name in self.streams}
        try:
            for _ in Logger.progress(range(ticks), desc="ticks", total=ticks):
                start = time.perf_counter()
                result = self.pipeline.advance()
                for name in result.frames:
                    accepted[name] += 1
                self._sleep_until(start)
            for name, provider in self.pipeline.providers():
                self.logger.info(
                    f"'{name}': {accepted[name]} frames accepted, "
                    f"last #{provider.latest_frame_number}, "
                    f"{provider.frame_count} retained over "
                    f"{provider.frame_history_duration:.4f} s"
                )
        finally:
            self.pipeline.close()
        return accepted


def _make_sensor(ns: argparse.Namespace) -> SensorSource:
    if ns.synthetic:
        synth = Config.synthetic()
        sensor = SyntheticSensor(
            width=int(synth.get("width", 320)),
            height=int(synth.get("height", 240)),
            frame_every=int(synth.get("frame_every", 1)),
        )
        return sensor
    from depthcam.camera.realsense import RealSenseSource

    depth_range = Config.depth_range()
    if depth_range is not None:
        sensor = RealSenseSource(depth_range=depth_range)
    else:
        sensor = RealSenseSource()
    sensor.start()
    return sensor


def _build(ns: argparse.Namespace) -> StreamViewCLI:
    streams = Config.streams()
    if ns.stream:
        streams = {k: v for k, v in streams.items() if k in ns.stream}
    return StreamViewCLI(_make_sensor(ns), streams, Config.tick_rate_hz())


def _stop_sensor(cli: StreamViewCLI) -> None:
    stop = getattr(cli.sensor, "stop", None)
    if stop is not None:
        stop()


def _view(ns: argparse.Namespace) -> None:
    cli = _build(ns)
    try:
        cli.view()
    finally:
        _stop_sensor(cli)


def _bench(ns: argparse.Namespace) -> None:
    cli = _build(ns)
    try:
        cli.bench(ns.ticks)
    finally:
        _stop_sensor(cli)


def _intrinsics(ns: argparse.Namespace) -> None:
    from depthcam.camera.realsense import RealSenseSource

    logger = Logger.get_logger("cli.stream_view")
    sensor = RealSenseSource()
    sensor.start()
    try:
        for serial, optics in sensor.describe().items():
            for optic, intr in optics.items():
                logger.info(f"{serial} {optic}: {intr}")
                print(f"[{serial}] {optic} intrinsics:")
                print(intr.camera_matrix())
                print(intr.dist_coeffs())
    finally:
        sensor.stop()


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--synthetic", action="store_true", help="Use generated test patterns"
    )
    parser.add_argument(
        "--stream",
        action="append",
        default=None,
        help="Only run the named stream (repeatable)",
    )


def _add_bench_args(parser: argparse.ArgumentParser) -> None:
    _add_source_args(parser)
    parser.add_argument("--ticks", type=int, default=300, help="Ticks to run")


def main(argv: list[str] | None = None) -> None:
    CommandDispatcher(
        "Depth camera frame pipeline",
        [
            Command("view", _view, _add_source_args, "Show processed streams"),
            Command("bench", _bench, _add_bench_args, "Run headless ticks"),
            Command("intrinsics", _intrinsics, None, "Print device intrinsics"),
        ],
    ).run(argv)


if __name__ == "__main__":
    main()
