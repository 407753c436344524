# utils/config.py
"""YAML configuration of the pipeline tools (OmegaConf backend).

``conf/app.yaml`` holds four sections: ``logging``, ``pipeline`` (tick rate
and the stream table), ``realsense`` and ``synthetic``. :class:`Config` loads
one file per process and hands out typed views of those sections.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Tuple, cast

from omegaconf import OmegaConf

from depthcam.stream_config import StreamConfig, stream_configs_from_dict
from utils.logger import Logger
from utils.settings import BASE_DIR, paths
from utils.settings import logging as LOGCFG
from utils.settings import pipeline as PIPECFG

DEFAULT_CONFIG_PATH = paths.CONF_DIR / "app.yaml"


class ConfigLoader(ABC):
    """Turns a configuration file into plain nested dicts."""

    @abstractmethod
    def load(self, filename: Path) -> Dict[str, Any]:
        """Parse ``filename``."""


class YamlConfigLoader(ConfigLoader):
    def load(self, filename: Path) -> Dict[str, Any]:
        cfg = OmegaConf.load(filename)
        return cast(Dict[str, Any], OmegaConf.to_container(cfg, resolve=True))


class Config:
    """Process-wide view of the loaded configuration file."""

    _data: Dict[str, Any] | None = None
    _source: Path | None = None
    _loader: ConfigLoader = YamlConfigLoader()
    _logger = Logger.get_logger("utils.config")

    @classmethod
    def load(
        cls,
        filename: Path | str = DEFAULT_CONFIG_PATH,
        force_reload: bool = False,
        log_level: str | None = None,
    ) -> None:
        """
        Load ``filename`` unless a file is already loaded, then re-target the
        log sinks to its ``logging`` section. ``log_level`` overrides
        ``logging.level``.
        """
        if cls._data is not None and not force_reload:
            return
        path = Path(filename)
        try:
            data = cls._loader.load(path)
        except Exception as e:
            cls._logger.error(f"Failed to load config {path}: {e}")
            raise
        cls._data = data or {}
        cls._source = path
        logging_cfg = cls._data.get("logging") or {}
        Logger.configure(
            level=log_level or logging_cfg.get("level", LOGCFG.level),
            log_dir=cls.log_dir(),
            json_format=logging_cfg.get("json", LOGCFG.json),
        )
        cls._logger.info(f"Config loaded from {path}")

    @classmethod
    def source(cls) -> Path | None:
        return cls._source

    @classmethod
    def get(cls, path: str, default: Any | None = None) -> Any:
        """Value at dotted ``path`` or ``default`` when any key is missing."""
        if cls._data is None:
            cls.load()
        value: Any = cls._data
        for key in path.split("."):
            value = value.get(key) if isinstance(value, dict) else None
            if value is None:
                cls._logger.debug(f"'{path}' not set, using {default!r}")
                return default
        return value

    @classmethod
    def log_dir(cls) -> Path:
        """``logging.log_dir``; relative paths are taken from the repo root."""
        value = cls.get("logging.log_dir")
        if value is None:
            return LOGCFG.log_dir
        path = Path(value)
        return path if path.is_absolute() else BASE_DIR / path

    @classmethod
    def streams(cls) -> Dict[str, StreamConfig]:
        """The ``pipeline.streams`` table as validated stream configs."""
        return stream_configs_from_dict(cls.get("pipeline.streams", {}))

    @classmethod
    def tick_rate_hz(cls) -> float:
        return float(cls.get("pipeline.tick_rate_hz", PIPECFG.tick_rate_hz))

    @classmethod
    def depth_range(cls) -> Tuple[float, float] | None:
        """``realsense.depth_range`` as ``(min, max)`` meters, if configured."""
        value = cls.get("realsense.depth_range")
        if value is None:
            return None
        lo, hi = (float(v) for v in value)
        if not hi > lo:
            raise ValueError(f"realsense.depth_range must be [min, max], got {value}")
        return lo, hi

    @classmethod
    def synthetic(cls) -> Dict[str, Any]:
        return dict(cls.get("synthetic", {}))
