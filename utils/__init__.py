"""Shared helper modules used across the project.

The :mod:`utils` package contains the ambient helpers: the loguru based
logger, default settings, the YAML config loader, camera error types with the
global exception tracker, and the CLI dispatcher.
"""

from .logger import Logger, LoggerType
from .settings import (
    DEPTH_SCALE,
    DEVICE_TICKS_TO_SECONDS,
    LoggingCfg,
    PipelineCfg,
    RealSenseCfg,
    logging,
    paths,
    pipeline,
    realsense,
)
from .error_tracker import (
    CalibrationError,
    CameraConnectionError,
    CameraError,
    ErrorTracker,
    FrameFormatError,
    ResourceExhaustedError,
)

__all__ = [
    "DEPTH_SCALE",
    "DEVICE_TICKS_TO_SECONDS",
    "Logger",
    "LoggerType",
    "LoggingCfg",
    "PipelineCfg",
    "RealSenseCfg",
    "logging",
    "paths",
    "pipeline",
    "realsense",
    "CameraError",
    "CameraConnectionError",
    "CalibrationError",
    "FrameFormatError",
    "ResourceExhaustedError",
    "ErrorTracker",
]
