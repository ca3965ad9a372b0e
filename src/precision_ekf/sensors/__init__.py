"""
Sensor-side types for precision localization.

This module contains the typed samples the node consumes and the
per-channel health monitor.
"""

from .health import SensorHealth
from .samples import AbsolutePositionSample, InertialSample, OdometrySample

__all__ = [
    "OdometrySample",
    "InertialSample",
    "AbsolutePositionSample",
    "SensorHealth",
]
