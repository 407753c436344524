"""Project wide configuration dataclasses and default values."""

from dataclasses import dataclass
from pathlib import Path

# Root dir
BASE_DIR = Path(__file__).resolve().parent.parent

# Device clocks report frame times in 100 ns ticks.
DEVICE_TICKS_TO_SECONDS = 0.0000001

# Default raw depth unit: millimeters.
DEPTH_SCALE = 0.001


@dataclass(frozen=True)
class Paths:
    """
    Filesystem locations used by the pipeline tools.
    """

    CONF_DIR: Path = BASE_DIR / "conf"
    LOG_DIR: Path = BASE_DIR / ".logs"


paths = Paths()


@dataclass(frozen=True)
class LoggingCfg:
    """
    Logging configuration for the project.

    - level: Log level ("INFO", "DEBUG", etc.)
    - json: Enable/disable structured JSON logging.
    - file_sink: Write a log file next to the console output.
    - log_dir: Directory where log files are stored (repo-anchored).
    - log_format: Console log output format.
    - log_file_format: File log output format.
    - progress_bar_format: TQDM progress bar format.
    """

    level: str = "INFO"
    json: bool = True
    file_sink: bool = True
    log_dir: Path = paths.LOG_DIR
    log_format: str = (
        "<green>{time:MM-DD HH:mm:ss}</green>"
        "[<level>{level:.3}</level>]"
        "[<cyan>{extra[module]:.18}</cyan>:<cyan>{line:<3}</cyan>]"
        "<level>{message}</level>"
    )
    log_file_format: str = (
        "{time:YYYY-MM-DD HH:mm:ss}[{level}][{file}:{line}][{extra[stream]}]{message}"
    )
    progress_bar_format: str = (
        "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]"
    )


logging = LoggingCfg()


@dataclass(frozen=True)
class PipelineCfg:
    """
    Frame pipeline defaults.

    - tick_rate_hz: Rate of the host update loop driving ``advance()``.
    - history_capacity: Frames kept per stream when a config omits it.
    - infrared_scale: Default gain applied when packing 16 bit IR into 8 bit.
    - infrared_scale_max: Upper bound accepted for ``infrared_scale``.
    - min_depth_m / max_depth_m: Depth range used by sensors without one.
    """

    tick_rate_hz: float = 30.0
    history_capacity: int = 1
    infrared_scale: float = 1.0
    infrared_scale_max: float = 50.0
    min_depth_m: float = 0.5
    max_depth_m: float = 10.0


pipeline = PipelineCfg()


@dataclass(frozen=True)
class RealSenseCfg:
    """
    Intel RealSense streaming configuration:
    - frame size (color/depth/infrared share the depth resolution)
    - frame rate
    - depth units in meters per raw value
    """

    color_width: int = 1280
    color_height: int = 720
    depth_width: int = 848
    depth_height: int = 480
    fps: int = 30
    depth_units: float = DEPTH_SCALE
    emitter_enabled: bool = True


realsense = RealSenseCfg()


__all__ = [
    "Paths",
    "LoggingCfg",
    "PipelineCfg",
    "RealSenseCfg",
    "DEVICE_TICKS_TO_SECONDS",
    "DEPTH_SCALE",
    "paths",
    "logging",
    "pipeline",
    "realsense",
]
