import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from depthcam.intrinsics import CameraIntrinsics
from utils.error_tracker import CalibrationError


def test_from_coeffs_uses_opencv_order() -> None:
    intr = CameraIntrinsics.from_coeffs(
        640, 480, 320.5, 240.5, 600.0, 601.0, [0.1, -0.2, 0.001, 0.002, 0.3]
    )
    assert (intr.k1, intr.k2, intr.k3) == (0.1, -0.2, 0.3)
    assert (intr.p1, intr.p2) == (0.001, 0.002)
    assert intr.k6 == 0.0
    assert np.allclose(
        intr.dist_coeffs(), [0.1, -0.2, 0.001, 0.002, 0.3, 0.0, 0.0, 0.0]
    )


def test_camera_matrix() -> None:
    intr = CameraIntrinsics(640, 480, 320.0, 240.0, 600.0, 610.0)
    K = intr.camera_matrix()
    assert K.shape == (3, 3)
    assert K[0, 0] == 600.0 and K[1, 1] == 610.0
    assert K[0, 2] == 320.0 and K[1, 2] == 240.0
    assert K[2, 2] == 1.0


def test_from_dict_driver_layout() -> None:
    intr = CameraIntrinsics.from_dict(
        {
            "width": 848,
            "height": 480,
            "ppx": 421.1,
            "ppy": 240.7,
            "fx": 425.0,
            "fy": 425.5,
            "coeffs": [0.0, 0.0, 0.0, 0.0, 0.0],
        }
    )
    assert intr.cx == pytest.approx(421.1)
    assert intr.is_valid()


def test_from_dict_named_coefficients() -> None:
    intr = CameraIntrinsics.from_dict(
        {"width": 4, "height": 3, "cx": 2, "cy": 1.5, "fx": 3, "fy": 3, "k2": 0.5}
    )
    assert intr.k2 == 0.5
    assert intr.k1 == 0.0


def test_from_dict_missing_key() -> None:
    with pytest.raises(CalibrationError):
        CameraIntrinsics.from_dict({"width": 4, "height": 3, "fx": 1.0})


def test_equal_values_compare_equal() -> None:
    a = CameraIntrinsics(4, 3, 2.0, 1.5, 3.0, 3.0, k1=0.1)
    b = CameraIntrinsics(4, 3, 2.0, 1.5, 3.0, 3.0, k1=0.1)
    assert a == b
    assert hash(a) == hash(b)
    assert a != CameraIntrinsics(4, 3, 2.0, 1.5, 3.0, 3.0, k1=0.2)


@pytest.mark.parametrize(
    "kw",
    [
        dict(width=0),
        dict(height=0),
        dict(fx=0.0),
        dict(fy=-2.0),
        dict(cx=float("inf")),
        dict(p2=float("nan")),
    ],
)
def test_validate_rejects(kw) -> None:
    params = dict(width=4, height=3, cx=2.0, cy=1.5, fx=3.0, fy=3.0)
    params.update(kw)
    intr = CameraIntrinsics(**params)
    assert not intr.is_valid()
    with pytest.raises(CalibrationError):
        intr.validate()


def test_scaled_to_other_resolution() -> None:
    intr = CameraIntrinsics(640, 480, 320.0, 240.0, 500.0, 510.0, k1=0.2, p2=0.01)
    half = intr.scaled_to(320, 240)
    assert (half.width, half.height) == (320, 240)
    assert (half.cx, half.cy) == (160.0, 120.0)
    assert (half.fx, half.fy) == (250.0, 255.0)
    assert (half.k1, half.p2) == (0.2, 0.01)
    assert intr.scaled_to(640, 480) is intr
