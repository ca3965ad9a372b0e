"""
State-space layouts supported by the precision EKF.

Each filter variant is a tagged configuration: a fixed state dimension, a
fixed meaning for every state index, and a rule for which measurement
channels can be interpreted against it. All variants share one predict and
one correct implementation; only the index layout differs.

Layouts:
    BASIC            x = [x, y, θ]ᵀ                       ∈ ℝ³
    KINEMATIC        x = [x, y, θ, v, ω]ᵀ                 ∈ ℝ⁵
    KINEMATIC_BIAS   x = [x, y, θ, v, ω, b_L, b_R]ᵀ       ∈ ℝ⁷

Where v is the linear velocity (m/s), ω the angular rate (rad/s) and
b_L, b_R are additive left/right wheel-velocity biases (m/s).
"""

import logging
from enum import Enum, IntEnum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class StateIndex(IntEnum):
    """Fixed position of every state component in the mean vector."""
    X = 0
    Y = 1
    HEADING = 2
    VELOCITY = 3
    ANGULAR_RATE = 4
    LEFT_WHEEL_BIAS = 5
    RIGHT_WHEEL_BIAS = 6


STATE_NAMES = (
    "x",
    "y",
    "heading",
    "velocity",
    "angular_rate",
    "left_wheel_bias",
    "right_wheel_bias",
)


class MeasurementChannel(Enum):
    """Sensor channels the filter can be corrected with."""
    ODOMETRY = "odom"
    INERTIAL = "imu"
    ABSOLUTE_POSITION = "gps"

    @classmethod
    def from_name(cls, name: str) -> "MeasurementChannel":
        """
        Resolve a channel from its short name ("odom", "imu", "gps") or
        its enum member name.

        Raises:
            ValueError: If the name matches no channel
        """
        if not isinstance(name, str):
            raise ValueError(f"Measurement channel name must be a string, got {name!r}")
        for channel in cls:
            if name.lower() in (channel.value, channel.name.lower()):
                return channel
        raise ValueError(f"Unknown measurement channel {name!r}")


class FilterVariant(Enum):
    """
    Selectable filter layouts.

    The value is the configuration name used by the node parameters.
    """
    BASIC = "ekf_3state"
    KINEMATIC = "ekf_5state"
    KINEMATIC_BIAS = "ekf_7state_verr"

    @property
    def dimension(self) -> int:
        """Number of states in this layout."""
        return _DIMENSIONS[self]

    @property
    def state_names(self) -> Tuple[str, ...]:
        """Ordered names of the active states."""
        return STATE_NAMES[:self.dimension]

    @property
    def has_kinematic_states(self) -> bool:
        """True when velocity and angular rate are estimated states."""
        return self.dimension > StateIndex.ANGULAR_RATE

    @property
    def has_wheel_bias(self) -> bool:
        """True when wheel-velocity biases are estimated states."""
        return self.dimension > StateIndex.RIGHT_WHEEL_BIAS

    def supports(self, channel: MeasurementChannel) -> bool:
        """
        Check whether a measurement channel can be used with this layout.

        Odometry and absolute position are accepted by every layout (the
        basic layout consumes odometry as its process input). The inertial
        channel observes the angular rate and needs it as a state.
        """
        if channel is MeasurementChannel.INERTIAL:
            return self.has_kinematic_states
        return True

    @classmethod
    def from_name(cls, name: str, default: Optional["FilterVariant"] = None) -> "FilterVariant":
        """
        Parse a filter type name such as ``"ekf_5state"``.

        Args:
            name: Configuration name or enum member name
            default: Variant returned (with a warning) for unknown names.
                     If None, unknown names raise ValueError.
        """
        if not isinstance(name, str):
            raise ValueError(f"Filter type must be a string, got {name!r}")
        for variant in cls:
            if name in (variant.value, variant.name) or name.upper() == variant.name:
                return variant
        if default is None:
            raise ValueError(f"Unknown filter type {name!r}")
        logger.warning(f"Unknown filter type \"{name}\"; defaulting to {default.value}")
        return default


_DIMENSIONS = {
    FilterVariant.BASIC: 3,
    FilterVariant.KINEMATIC: 5,
    FilterVariant.KINEMATIC_BIAS: 7,
}
