"""
Measurement models for the three sensor channels.

Every model provides the pieces the generic EKF correction needs:

    z = h(x) + v,   v ~ N(0, R)

    expected(x)  -> h(x)
    jacobian(x)  -> H = ∂h/∂x
    noise(z)     -> R (may depend on the observation itself)

Channels:
    Odometry            z = [v_L, v_R]ᵀ wheel velocities
                        h = [v − (L/2)ω + b_L, v + (L/2)ω + b_R]ᵀ
                        R = diag(α|z_i| + ε)
    Inertial            z = ω_gyro,   h = ω,   R = σ²_ω
    Absolute position   z = [x, y]ᵀ,  h = [x, y]ᵀ,   R = diag(σ²_x, σ²_y)

Bias terms b_L, b_R only appear when the layout estimates them.
"""

from typing import Tuple

import numpy as np

from ..errors import ConfigurationError
from .variants import FilterVariant, MeasurementChannel, StateIndex

# Track width used when none is configured (m)
DEFAULT_TRACK_WIDTH = 0.5


def _require_non_negative(name: str, value: float) -> float:
    if not np.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be finite and non-negative, got {value}")
    return float(value)


def twist_to_wheel_velocities(linear_velocity: float, angular_velocity: float,
                              track_width: float) -> Tuple[float, float]:
    """
    Convert a body twist to left/right wheel velocities.

        v_L = v − (L/2)·ω
        v_R = v + (L/2)·ω

    Returns:
        Tuple of (left_wheel_velocity, right_wheel_velocity) in m/s
    """
    half_track = track_width / 2.0
    return (linear_velocity - half_track * angular_velocity,
            linear_velocity + half_track * angular_velocity)


def wheel_velocities_to_twist(left_wheel_velocity: float, right_wheel_velocity: float,
                              track_width: float) -> Tuple[float, float]:
    """
    Convert wheel velocities back to (linear velocity, angular rate).

        v = (v_L + v_R)/2
        ω = (v_R − v_L)/L
    """
    return ((left_wheel_velocity + right_wheel_velocity) / 2.0,
            (right_wheel_velocity - left_wheel_velocity) / track_width)


class MeasurementModel:
    """
    Base class for channel measurement models.

    Subclasses set ``channel`` and ``size`` and implement ``expected``,
    ``jacobian`` and ``noise``.
    """

    channel: MeasurementChannel
    size: int

    def __init__(self, variant: FilterVariant):
        if not variant.supports(self.channel):
            raise ConfigurationError(
                f"{self.channel.name} measurements are not supported by {variant.value}")
        self.variant = variant
        self.dimension = variant.dimension

    def expected(self, state: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def noise(self, measurement: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class OdometryMeasurementModel(MeasurementModel):
    """
    Wheel velocity observation with speed-dependent noise.

    The noise law σ²(v) = α|v| + ε grows with wheel speed and never
    collapses below the floor ε at rest.

    Attributes:
        alpha: Variance growth per m/s of measured wheel speed
        epsilon: Variance floor
        track_width: Distance between the wheels (m)
    """

    channel = MeasurementChannel.ODOMETRY
    size = 2

    def __init__(self, variant: FilterVariant, alpha: float, epsilon: float,
                 track_width: float = DEFAULT_TRACK_WIDTH):
        super().__init__(variant)
        self.alpha = _require_non_negative("Odometry alpha", alpha)
        self.epsilon = _require_non_negative("Odometry epsilon", epsilon)
        if not np.isfinite(track_width) or track_width <= 0:
            raise ConfigurationError(f"Track width must be positive, got {track_width}")
        self.track_width = float(track_width)

    def wheel_variance(self, wheel_velocity: float) -> float:
        """Variance of one wheel velocity reading: α|v| + ε."""
        return self.alpha * abs(wheel_velocity) + self.epsilon

    def noise(self, measurement: np.ndarray) -> np.ndarray:
        return np.diag([self.wheel_variance(value) for value in measurement])

    def expected(self, state: np.ndarray) -> np.ndarray:
        left, right = twist_to_wheel_velocities(
            state[StateIndex.VELOCITY], state[StateIndex.ANGULAR_RATE], self.track_width)
        if self.variant.has_wheel_bias:
            left += state[StateIndex.LEFT_WHEEL_BIAS]
            right += state[StateIndex.RIGHT_WHEEL_BIAS]
        return np.array([left, right])

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        half_track = self.track_width / 2.0
        H = np.zeros((self.size, self.dimension))
        H[0, StateIndex.VELOCITY] = 1.0
        H[0, StateIndex.ANGULAR_RATE] = -half_track
        H[1, StateIndex.VELOCITY] = 1.0
        H[1, StateIndex.ANGULAR_RATE] = half_track
        if self.variant.has_wheel_bias:
            H[0, StateIndex.LEFT_WHEEL_BIAS] = 1.0
            H[1, StateIndex.RIGHT_WHEEL_BIAS] = 1.0
        return H

    def control(self, measurement: np.ndarray) -> Tuple[float, float]:
        """(v, ω) process input derived from wheel velocities (basic layout)."""
        return wheel_velocities_to_twist(measurement[0], measurement[1], self.track_width)


class InertialMeasurementModel(MeasurementModel):
    """Gyroscope yaw-rate observation with fixed variance."""

    channel = MeasurementChannel.INERTIAL
    size = 1

    def __init__(self, variant: FilterVariant, variance: float):
        super().__init__(variant)
        self.variance = _require_non_negative("Inertial variance", variance)

    def noise(self, measurement: np.ndarray) -> np.ndarray:
        return np.array([[self.variance]])

    def expected(self, state: np.ndarray) -> np.ndarray:
        return np.array([state[StateIndex.ANGULAR_RATE]])

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        H = np.zeros((self.size, self.dimension))
        H[0, StateIndex.ANGULAR_RATE] = 1.0
        return H


class AbsolutePositionMeasurementModel(MeasurementModel):
    """Direct (x, y) position fix with fixed diagonal variance."""

    channel = MeasurementChannel.ABSOLUTE_POSITION
    size = 2

    def __init__(self, variant: FilterVariant, variance_x: float, variance_y: float):
        super().__init__(variant)
        self.variance = np.array([
            _require_non_negative("Absolute position x variance", variance_x),
            _require_non_negative("Absolute position y variance", variance_y),
        ])

    def noise(self, measurement: np.ndarray) -> np.ndarray:
        return np.diag(self.variance)

    def expected(self, state: np.ndarray) -> np.ndarray:
        return state[StateIndex.X:StateIndex.Y + 1].copy()

    def jacobian(self, state: np.ndarray) -> np.ndarray:
        H = np.zeros((self.size, self.dimension))
        H[0, StateIndex.X] = 1.0
        H[1, StateIndex.Y] = 1.0
        return H
