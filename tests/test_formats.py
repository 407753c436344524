import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from depthcam.formats import FormatConverter
from depthcam.frame import PixelFormat
from utils.error_tracker import FrameFormatError


@pytest.fixture
def converter() -> FormatConverter:
    return FormatConverter()


def test_rgba_luminance_weights(converter: FormatConverter) -> None:
    src = np.zeros((1, 4, 4), np.uint8)
    src[0, 0] = (255, 0, 0, 255)
    src[0, 1] = (0, 255, 0, 255)
    src[0, 2] = (0, 0, 255, 255)
    src[0, 3] = (255, 255, 255, 0)
    out = np.empty((1, 4), np.uint8)
    converter.to_luminance(src, PixelFormat.RGBA8, out)
    assert abs(int(out[0, 0]) - 76) <= 1
    assert abs(int(out[0, 1]) - 150) <= 1
    assert abs(int(out[0, 2]) - 29) <= 1
    assert out[0, 3] == 255


def test_bgr_luminance_swaps_channels(converter: FormatConverter) -> None:
    src = np.zeros((1, 1, 3), np.uint8)
    src[0, 0] = (255, 0, 0)  # blue
    out = np.empty((1, 1), np.uint8)
    converter.to_luminance(src, PixelFormat.BGR8, out)
    assert abs(int(out[0, 0]) - 29) <= 1


def test_luminance_rejects_single_channel(converter: FormatConverter) -> None:
    with pytest.raises(FrameFormatError):
        converter.to_luminance(
            np.zeros((2, 2), np.uint8), PixelFormat.L8, np.empty((2, 2), np.uint8)
        )


def test_scale_16_to_8_values(converter: FormatConverter) -> None:
    src = np.array([[0, 256, 1024, 65535]], np.uint16)
    out = np.empty_like(src, dtype=np.uint8)
    converter.scale_16_to_8(src, 1.0, out)
    assert out.tolist() == [[0, 1, 4, 255]]
    converter.scale_16_to_8(src, 4.0, out)
    assert out.tolist() == [[0, 4, 16, 255]]


@pytest.mark.parametrize("seed", range(6))
def test_scale_16_to_8_stays_in_byte_range(converter: FormatConverter, seed) -> None:
    rng = np.random.default_rng(seed)
    src = rng.integers(0, 65536, size=(16, 16), dtype=np.uint16)
    scale = float(rng.uniform(0.0, 50.0))
    out = np.empty(src.shape, np.uint8)
    converter.scale_16_to_8(src, scale, out)
    expected = np.clip(src.astype(np.float64) * scale / 256.0, 0, 255)
    assert out.dtype == np.uint8
    assert np.all(np.abs(out.astype(np.float64) - expected) <= 1.0)


def test_normalize_depth(converter: FormatConverter) -> None:
    src = np.array([[500, 2750, 5000, 0]], np.uint16)  # millimeters
    out = np.empty(src.shape, np.float32)
    converter.normalize_depth(src, 0.5, 5.0, 0.001, out)
    assert np.allclose(out, [[0.0, 0.5, 1.0, -0.5 / 4.5]], atol=1e-6)


def test_normalize_depth_rejects_empty_range(converter: FormatConverter) -> None:
    src = np.zeros((1, 1), np.uint16)
    with pytest.raises(FrameFormatError):
        converter.normalize_depth(src, 2.0, 2.0, 0.001, np.empty((1, 1), np.float32))


def test_flip_vertical(converter: FormatConverter) -> None:
    src = np.arange(12, dtype=np.uint16).reshape(3, 4)
    out = np.empty_like(src)
    converter.flip_vertical(src, out)
    assert np.array_equal(out, src[::-1])
