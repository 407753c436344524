import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from depthcam.frame import Frame, PixelFormat
from depthcam.history import FrameHistoryBuffer
from utils.settings import DEVICE_TICKS_TO_SECONDS


def make_frame(timestamp: int, seq: int = 0) -> Frame:
    pixels = np.zeros((2, 2), np.uint8)
    return Frame(pixels, PixelFormat.L8, timestamp, seq)


def test_three_ticks_fill_capacity_three() -> None:
    history = FrameHistoryBuffer(3)
    for ts in (100, 200, 300):
        history.insert(make_frame(ts))
    assert history.count() == 3
    assert history.get(0).timestamp == 300
    assert history.get(2).timestamp == 100
    assert history.covered_duration() == pytest.approx(0.00002)


def test_get_out_of_range_returns_none() -> None:
    history = FrameHistoryBuffer(2)
    assert history.get(0) is None
    history.insert(make_frame(10))
    assert history.get(1) is None
    assert history.get(5) is None
    assert history.get(-1) is None
    assert history.frame_time(3) == 0.0


def test_eviction_returns_oldest_and_updates_duration() -> None:
    history = FrameHistoryBuffer(2)
    first = make_frame(100)
    history.insert(first)
    history.insert(make_frame(150))
    evicted = history.insert(make_frame(400))
    assert evicted is first
    assert [f.timestamp for f in history] == [400, 150]
    assert history.covered_ticks() == 250


def test_capacity_one_has_no_duration() -> None:
    history = FrameHistoryBuffer(1)
    for ts in (5, 10, 30):
        history.insert(make_frame(ts))
    assert history.count() == 1
    assert history.get(0).timestamp == 30
    assert history.covered_duration() == 0.0


def test_invalid_capacity() -> None:
    with pytest.raises(ValueError):
        FrameHistoryBuffer(0)


@pytest.mark.parametrize("seed", range(8))
def test_duration_matches_retained_deltas(seed: int) -> None:
    rng = np.random.default_rng(seed)
    capacity = int(rng.integers(1, 9))
    history = FrameHistoryBuffer(capacity)
    timestamps = np.cumsum(rng.integers(1, 5000, size=int(rng.integers(1, 40))))
    for n, ts in enumerate(timestamps, start=1):
        history.insert(make_frame(int(ts), n))
        retained = [f.timestamp for f in history]
        assert history.count() == min(n, capacity)
        assert history.get(0).timestamp == ts
        expected = sum(a - b for a, b in zip(retained, retained[1:]))
        assert history.covered_ticks() == expected
        assert history.covered_duration() == pytest.approx(
            expected * DEVICE_TICKS_TO_SECONDS
        )
