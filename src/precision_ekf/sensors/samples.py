"""
Typed sensor samples handed to the localization node.

Samples are immutable records of one reading and its timestamp (seconds,
any monotonic epoch shared by all channels). Converting them into filter
observations is the node's job.
"""

from dataclasses import dataclass
from typing import Tuple

from ..fusion.measurements import twist_to_wheel_velocities
from ..fusion.variants import MeasurementChannel


@dataclass(frozen=True)
class OdometrySample:
    """
    Wheel odometry twist.

    Attributes:
        linear_velocity: Forward velocity (m/s)
        angular_velocity: Yaw rate from the wheel encoders (rad/s)
        stamp: Measurement timestamp (s)
    """
    linear_velocity: float
    angular_velocity: float
    stamp: float

    channel = MeasurementChannel.ODOMETRY

    def wheel_velocities(self, track_width: float) -> Tuple[float, float]:
        """Left/right wheel velocities for the given track width."""
        return twist_to_wheel_velocities(self.linear_velocity, self.angular_velocity, track_width)


@dataclass(frozen=True)
class InertialSample:
    """
    Gyroscope yaw rate about the vertical axis.

    Attributes:
        angular_rate: Measured yaw rate (rad/s)
        stamp: Measurement timestamp (s)
    """
    angular_rate: float
    stamp: float

    channel = MeasurementChannel.INERTIAL


@dataclass(frozen=True)
class AbsolutePositionSample:
    """
    Absolute planar position fix, e.g. from GPS or an external tracker.

    Attributes:
        x: Position along the global x axis (m)
        y: Position along the global y axis (m)
        stamp: Measurement timestamp (s)
    """
    x: float
    y: float
    stamp: float

    channel = MeasurementChannel.ABSOLUTE_POSITION
