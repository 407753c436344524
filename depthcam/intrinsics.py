"""Pinhole camera intrinsics with Brown-Conrady distortion."""

from __future__ import annotations

import math
from dataclasses import astuple, dataclass, replace
from typing import Any, Mapping, Sequence

import numpy as np

from utils.error_tracker import CalibrationError


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Intrinsic parameters of one physical optic (color or depth/IR).

    ``width`` and ``height`` are the resolution the calibration applies to.
    Radial coefficients ``k1..k6`` and tangential ``p1, p2`` default to 0.
    Instances compare by value, which is what the undistortion cache keys on.
    """

    width: int
    height: int
    cx: float
    cy: float
    fx: float
    fy: float
    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0
    k5: float = 0.0
    k6: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    @classmethod
    def from_coeffs(
        cls,
        width: int,
        height: int,
        cx: float,
        cy: float,
        fx: float,
        fy: float,
        coeffs: Sequence[float],
    ) -> "CameraIntrinsics":
        """
        Build intrinsics from an OpenCV ordered coefficient list
        ``(k1, k2, p1, p2[, k3[, k4, k5, k6]])``. Missing entries are 0.
        """
        c = [float(v) for v in coeffs][:8]
        c += [0.0] * (8 - len(c))
        k1, k2, p1, p2, k3, k4, k5, k6 = c
        return cls(
            width=int(width),
            height=int(height),
            cx=float(cx),
            cy=float(cy),
            fx=float(fx),
            fy=float(fy),
            k1=k1,
            k2=k2,
            k3=k3,
            k4=k4,
            k5=k5,
            k6=k6,
            p1=p1,
            p2=p2,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CameraIntrinsics":
        """
        Parse the dictionary layout reported by camera drivers
        (``ppx``/``ppy`` or ``cx``/``cy`` plus an optional ``coeffs`` list).
        """
        try:
            cx = data["cx"] if "cx" in data else data["ppx"]
            cy = data["cy"] if "cy" in data else data["ppy"]
            if "coeffs" in data:
                return cls.from_coeffs(
                    data["width"],
                    data["height"],
                    cx,
                    cy,
                    data["fx"],
                    data["fy"],
                    data["coeffs"] or (),
                )
            named = {
                k: float(data[k])
                for k in ("k1", "k2", "k3", "k4", "k5", "k6", "p1", "p2")
                if k in data
            }
            return cls(
                width=int(data["width"]),
                height=int(data["height"]),
                cx=float(cx),
                cy=float(cy),
                fx=float(data["fx"]),
                fy=float(data["fy"]),
                **named,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CalibrationError(f"Unparseable intrinsics: {e}") from e

    def camera_matrix(self) -> np.ndarray:
        """3x3 camera matrix ``K``."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def dist_coeffs(self) -> np.ndarray:
        """Distortion vector in OpenCV order ``k1, k2, p1, p2, k3, k4, k5, k6``."""
        return np.array(
            [self.k1, self.k2, self.p1, self.p2, self.k3, self.k4, self.k5, self.k6],
            dtype=np.float64,
        )

    def scaled_to(self, width: int, height: int) -> "CameraIntrinsics":
        """
        Intrinsics for the same optic at another resolution.

        Focal lengths and principal point scale per axis; distortion
        coefficients are resolution independent.
        """
        if (width, height) == (self.width, self.height):
            return self
        if self.width <= 0 or self.height <= 0:
            raise CalibrationError(
                f"Zero resolution in intrinsics: {self.width}x{self.height}"
            )
        sx = width / self.width
        sy = height / self.height
        return replace(
            self,
            width=int(width),
            height=int(height),
            cx=self.cx * sx,
            cy=self.cy * sy,
            fx=self.fx * sx,
            fy=self.fy * sy,
        )

    def validate(self) -> None:
        """Raise :class:`CalibrationError` if the intrinsics cannot build a map."""
        if self.width <= 0 or self.height <= 0:
            raise CalibrationError(
                f"Zero resolution in intrinsics: {self.width}x{self.height}"
            )
        if not all(math.isfinite(v) for v in astuple(self)):
            raise CalibrationError("Intrinsics contain non-finite values")
        if self.fx <= 0.0 or self.fy <= 0.0:
            raise CalibrationError(
                f"Non-positive focal length: fx={self.fx}, fy={self.fy}"
            )

    def is_valid(self) -> bool:
        try:
            self.validate()
        except CalibrationError:
            return False
        return True
