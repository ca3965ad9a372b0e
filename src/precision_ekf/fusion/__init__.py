"""
Sensor fusion core for precision planar localization.

This package implements the Extended Kalman Filter, its selectable state
layouts, the differential-drive process model and the per-channel
measurement models.
"""

from .kalman import PrecisionEKF, CovarianceMatrix, FilterDiagnostics
from .measurements import (
    AbsolutePositionMeasurementModel,
    InertialMeasurementModel,
    OdometryMeasurementModel,
    twist_to_wheel_velocities,
    wheel_velocities_to_twist,
)
from .process import ProcessModel, ProcessNoise, wrap_angle
from .variants import FilterVariant, MeasurementChannel, StateIndex

__all__ = [
    "PrecisionEKF",
    "CovarianceMatrix",
    "FilterDiagnostics",
    "FilterVariant",
    "MeasurementChannel",
    "StateIndex",
    "ProcessModel",
    "ProcessNoise",
    "OdometryMeasurementModel",
    "InertialMeasurementModel",
    "AbsolutePositionMeasurementModel",
    "twist_to_wheel_velocities",
    "wheel_velocities_to_twist",
    "wrap_angle",
]
