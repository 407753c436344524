"""Fixed-capacity history of recently accepted frames."""

from __future__ import annotations

from typing import Iterator, List, Optional

from depthcam.frame import Frame
from utils.settings import DEVICE_TICKS_TO_SECONDS


class FrameHistoryBuffer:
    """
    Newest-first ring of frames.

    Index 0 is the most recent frame and ``count - 1`` the oldest retained
    one. The covered duration is the sum of timestamp deltas between adjacent
    retained frames; it is kept in device ticks and updated on every insert
    and eviction instead of being recomputed.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._frames: List[Optional[Frame]] = [None] * capacity
        self._count = 0
        self._covered_ticks = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def count(self) -> int:
        return self._count

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[Frame]:
        for i in range(self._count):
            yield self._frames[i]

    def insert(self, frame: Frame) -> Optional[Frame]:
        """
        Put ``frame`` at index 0, shifting older frames back.

        Returns the frame evicted from the last slot, if any, so its storage
        can be recycled by the caller.
        """
        frames = self._frames
        evicted = None
        if self._count == self._capacity:
            evicted = frames[-1]
            if self._capacity > 1:
                self._covered_ticks -= frames[-2].timestamp - frames[-1].timestamp
        else:
            self._count += 1
        for i in range(self._count - 1, 0, -1):
            frames[i] = frames[i - 1]
        frames[0] = frame
        if self._count > 1:
            self._covered_ticks += frame.timestamp - frames[1].timestamp
        return evicted

    def get(self, index: int) -> Optional[Frame]:
        """Frame at ``index`` or ``None`` when nothing is stored there."""
        if 0 <= index < self._count:
            return self._frames[index]
        return None

    def latest(self) -> Optional[Frame]:
        return self.get(0)

    def frame_time(self, index: int) -> float:
        """Timestamp in seconds of the frame at ``index``, 0.0 if absent."""
        frame = self.get(index)
        return frame.timestamp_seconds if frame is not None else 0.0

    def covered_ticks(self) -> int:
        return self._covered_ticks

    def covered_duration(self) -> float:
        """Seconds spanned by the retained frames."""
        return self._covered_ticks * DEVICE_TICKS_TO_SECONDS

    def clear(self) -> None:
        self._frames = [None] * self._capacity
        self._count = 0
        self._covered_ticks = 0
