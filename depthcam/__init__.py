"""Depth camera frame acquisition and processing.

The package turns per-tick raw frames of color, infrared and depth streams
into ready-to-consume images. A :class:`FramePipeline` owns one
:class:`StreamProcessor` per configured stream; each processor detects new
frames by device timestamp, converts pixel formats, removes lens distortion
with cached OpenCV remap tables, flips vertically on request and keeps a
fixed-size history of recent frames.
"""

from .formats import FormatConverter
from .frame import Frame, PixelFormat, RawFrame, StreamKind
from .history import FrameHistoryBuffer
from .intrinsics import CameraIntrinsics
from .pipeline import FramePipeline, StreamState, TickResult
from .processor import StreamProcessor
from .provider import FrameProvider
from .stream_config import StreamConfig, stream_configs_from_dict
from .undistort import UndistortionMap, UndistortionMapCache, build_undistortion_map

__all__ = [
    "CameraIntrinsics",
    "FormatConverter",
    "Frame",
    "FrameHistoryBuffer",
    "FramePipeline",
    "FrameProvider",
    "PixelFormat",
    "RawFrame",
    "StreamConfig",
    "StreamKind",
    "StreamProcessor",
    "StreamState",
    "TickResult",
    "UndistortionMap",
    "UndistortionMapCache",
    "build_undistortion_map",
    "stream_configs_from_dict",
]
