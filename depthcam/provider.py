"""Abstract frame provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from depthcam.frame import Frame


class FrameProvider(ABC):
    """Read access to the latest frame and the retained history of a stream."""

    @abstractmethod
    def latest_frame(self) -> Frame | None:
        """Most recently accepted frame."""

    @abstractmethod
    def history_frame(self, index: int) -> Frame | None:
        """Frame at history ``index``; 0 is the latest, 1 the previous one."""

    @property
    @abstractmethod
    def frame_count(self) -> int:
        """Number of frames currently retained."""

    @property
    @abstractmethod
    def latest_frame_interval(self) -> float:
        """Seconds between the two latest accepted frames."""

    @property
    @abstractmethod
    def latest_frame_number(self) -> int:
        """Sequence number of the latest accepted frame."""

    @property
    @abstractmethod
    def frame_history_duration(self) -> float:
        """Seconds spanned by the retained frames."""

    def latest_frame_time(self) -> float:
        """Device time of the latest frame in seconds, 0.0 before the first."""
        frame = self.latest_frame()
        return frame.timestamp_seconds if frame is not None else 0.0

    def history_frame_time(self, index: int) -> float:
        """Device time in seconds of the frame at ``index``, 0.0 if absent."""
        frame = self.history_frame(index)
        return frame.timestamp_seconds if frame is not None else 0.0
