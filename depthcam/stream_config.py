"""Per-stream processing settings."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping

from depthcam.frame import StreamKind
from utils.settings import pipeline as PIPECFG


@dataclass(frozen=True)
class StreamConfig:
    """
    Settings for one stream of one sensor.

    Only ``history_capacity`` may change while a stream is running (see
    :meth:`with_history_capacity`); everything else is fixed per session.
    """

    kind: StreamKind = StreamKind.COLOR
    sensor_index: int = 0
    undistort: bool = False
    flip_vertically: bool = False
    convert_to_luminance: bool = False
    infrared_scale: float = PIPECFG.infrared_scale
    history_capacity: int = PIPECFG.history_capacity

    def __post_init__(self) -> None:
        if not isinstance(self.kind, StreamKind):
            object.__setattr__(self, "kind", StreamKind(str(self.kind).lower()))
        if self.sensor_index < 0:
            raise ValueError(f"sensor_index must be >= 0, got {self.sensor_index}")
        if self.history_capacity < 1:
            raise ValueError(
                f"history_capacity must be >= 1, got {self.history_capacity}"
            )
        if not 0.0 <= self.infrared_scale <= PIPECFG.infrared_scale_max:
            raise ValueError(
                f"infrared_scale must be in [0, {PIPECFG.infrared_scale_max}], "
                f"got {self.infrared_scale}"
            )
        if self.convert_to_luminance and self.kind is StreamKind.DEPTH:
            raise ValueError("convert_to_luminance applies to color/infrared only")

    @property
    def processes(self) -> bool:
        """True when any stage between raw acquisition and output is enabled."""
        return self.undistort or self.flip_vertically or self.convert_to_luminance

    def with_history_capacity(self, capacity: int) -> "StreamConfig":
        return replace(self, history_capacity=capacity)


def stream_configs_from_dict(data: Mapping[str, Any]) -> Dict[str, StreamConfig]:
    """
    Build ``{name: StreamConfig}`` from a ``pipeline.streams`` config section.

    Unknown keys raise ``ValueError`` so typos in YAML do not pass silently.
    """
    allowed = {f.name for f in fields(StreamConfig)}
    configs: Dict[str, StreamConfig] = {}
    for name, entry in (data or {}).items():
        entry = dict(entry or {})
        unknown = set(entry) - allowed
        if unknown:
            raise ValueError(f"Unknown keys for stream '{name}': {sorted(unknown)}")
        configs[str(name)] = StreamConfig(**entry)
    return configs
