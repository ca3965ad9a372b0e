"""
Precision EKF: planar robot localization with an Extended Kalman Filter.

This package fuses wheel odometry, a single-axis gyroscope and absolute
position fixes into a planar pose estimate with covariance.

This package implements:
- An Extended Kalman Filter over three selectable state layouts
  (pose; pose + velocities; pose + velocities + wheel biases)
- Odometry, inertial and absolute position measurement models
- A localization node with a single prediction-authority channel,
  pose publishing and debug records
- A differential-drive simulator and debug plotting for offline analysis
"""

from .errors import ConfigurationError, EstimatorError, InputError, NumericalError
from .fusion.kalman import PrecisionEKF
from .fusion.process import ProcessNoise
from .fusion.variants import FilterVariant, MeasurementChannel
from .node.config import NodeConfig
from .node.node import PoseWithCovarianceStamped, PrecisionEKFNode
from .sensors.samples import AbsolutePositionSample, InertialSample, OdometrySample

__version__ = "1.0.0"

__all__ = [
    "PrecisionEKF",
    "ProcessNoise",
    "FilterVariant",
    "MeasurementChannel",
    "NodeConfig",
    "PrecisionEKFNode",
    "PoseWithCovarianceStamped",
    "OdometrySample",
    "InertialSample",
    "AbsolutePositionSample",
    "EstimatorError",
    "ConfigurationError",
    "InputError",
    "NumericalError",
]
