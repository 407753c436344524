"""Sensor collaborators.

This subpackage defines the abstract :class:`SensorSource` the frame pipeline
pulls from, a scripted :class:`StubSensor`, and a :class:`SyntheticSensor`
producing moving test patterns. The RealSense adapter lives in
:mod:`depthcam.camera.realsense` and needs the ``pyrealsense2`` extra.
"""

from .sensor_base import SensorSource, optic_for
from .simulated import StubSensor, SyntheticSensor

__all__ = [
    "SensorSource",
    "StubSensor",
    "SyntheticSensor",
    "optic_for",
]
