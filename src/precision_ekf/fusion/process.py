"""
Planar differential-drive process model.

Mathematical Model:
    The robot moves on an arc of constant linear velocity v and angular
    rate ω over the elapsed time Δt. Integrating the unicycle kinematics
    exactly gives, for |ω| > ε:

        x' = x + (v/ω)·(sin(θ + ωΔt) − sin θ)
        y' = y − (v/ω)·(cos(θ + ωΔt) − cos θ)
        θ' = θ + ωΔt

    and, in the straight-line limit |ω| ≤ ε, midpoint integration:

        x' = x + vΔt·cos(θ + ωΔt/2)
        y' = y + vΔt·sin(θ + ωΔt/2)

    Velocity, angular rate and wheel biases follow a random walk
    (identity transition, noise-only growth).

Covariance Propagation:
    P' = F·P·Fᵀ + G·M·Gᵀ + Q·Δt

    F = ∂f/∂x at the pre-update mean, Q = diag of the configured process
    variances. G·M·Gᵀ is only present in the basic layout, where v and ω
    are not states but inputs derived from measured wheel velocities with
    variance M.
"""

import logging
from dataclasses import dataclass, fields
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import ConfigurationError
from .variants import FilterVariant, StateIndex

logger = logging.getLogger(__name__)

# Angular rates below this are integrated as straight-line motion
EPS = 1e-5


def wrap_angle(angle: float) -> float:
    """Wrap an angle to the interval (-π, π]."""
    wrapped = np.mod(angle + np.pi, 2 * np.pi) - np.pi
    if wrapped == -np.pi:
        return np.pi
    return float(wrapped)


@dataclass
class ProcessNoise:
    """
    Process noise variances, one per modeled quantity.

    Values are variances (sigma²) per second of elapsed time. The defaults
    are the squares of the standard deviations the node has always used.
    A layout of dimension N uses the first N entries; the gyro bias entry
    is accepted for completeness but no layout estimates it.
    """
    x: float = 0.01 ** 2
    y: float = 0.01 ** 2
    heading: float = 0.05 ** 2
    velocity: float = 0.5 ** 2
    angular_rate: float = 0.5 ** 2
    left_wheel_velocity: float = 0.05 ** 2
    right_wheel_velocity: float = 0.05 ** 2
    gyro_bias: float = 0.001 ** 2

    def __post_init__(self):
        """Validate process noise variances."""
        for field in fields(self):
            value = getattr(self, field.name)
            if not np.isfinite(value) or value < 0:
                raise ConfigurationError(
                    f"Process noise variance '{field.name}' must be finite and non-negative, got {value}")

    @classmethod
    def names(cls) -> Tuple[str, ...]:
        """Ordered entry names."""
        return tuple(field.name for field in fields(cls))

    @classmethod
    def from_sigmas(cls, **sigmas: float) -> "ProcessNoise":
        """Build from standard deviations; variance = sigma²."""
        return cls(**{name: sigma ** 2 for name, sigma in sigmas.items()})

    @classmethod
    def coerce(cls, noise: Union["ProcessNoise", Sequence[float], Mapping[str, float]],
               required: int) -> "ProcessNoise":
        """
        Convert a sequence or mapping of variances to ProcessNoise.

        Args:
            noise: ProcessNoise, ordered variances or name → variance mapping
            required: Number of leading entries that must be supplied

        Raises:
            ConfigurationError: If fewer than ``required`` entries are given
        """
        if isinstance(noise, cls):
            return noise

        names = cls.names()
        if isinstance(noise, Mapping):
            unknown = set(noise) - set(names)
            if unknown:
                raise ConfigurationError(f"Unknown process noise entries: {sorted(unknown)}")
            missing = [name for name in names[:required] if name not in noise]
            if missing:
                raise ConfigurationError(f"Process noise is missing required entries: {missing}")
            return cls(**{name: float(value) for name, value in noise.items()})

        values = np.asarray(noise, dtype=float).ravel()
        if len(values) < required:
            raise ConfigurationError(
                f"Process noise needs at least {required} entries, got {len(values)}")
        if len(values) > len(names):
            raise ConfigurationError(
                f"Process noise accepts at most {len(names)} entries, got {len(values)}")
        return cls(**dict(zip(names, values.tolist())))

    def as_array(self) -> np.ndarray:
        """All eight variances in declaration order."""
        return np.array([getattr(self, name) for name in self.names()])


class ProcessModel:
    """
    Nonlinear kinematic prediction for one filter layout.

    The model is stateless apart from its configuration: every call takes
    the current mean and elapsed time and returns the predicted mean,
    the transition Jacobian and the noise contribution.

    Attributes:
        variant: Layout the model operates on
        noise_diagonal: Per-state process variances (per second)
    """

    def __init__(self, variant: FilterVariant, process_noise: ProcessNoise):
        self.variant = variant
        self.dimension = variant.dimension
        self.noise_diagonal = process_noise.as_array()[:self.dimension].copy()

    def _velocities(self, state: np.ndarray,
                    control: Optional[Tuple[float, float]]) -> Tuple[float, float]:
        """Linear velocity and angular rate driving the motion."""
        if self.variant.has_kinematic_states:
            return float(state[StateIndex.VELOCITY]), float(state[StateIndex.ANGULAR_RATE])
        if control is None:
            return 0.0, 0.0
        return control

    def transition(self, state: np.ndarray, dt: float,
                   control: Optional[Tuple[float, float]] = None) -> np.ndarray:
        """
        Apply the nonlinear transition f(x, u).

        Args:
            state: Current mean
            dt: Elapsed time (s)
            control: (v, ω) input, used only by the basic layout

        Returns:
            Predicted mean
        """
        v, omega = self._velocities(state, control)
        theta = state[StateIndex.HEADING]
        new_state = state.copy()

        if abs(omega) > EPS:
            radius = v / omega
            theta_end = theta + omega * dt
            new_state[StateIndex.X] += radius * (np.sin(theta_end) - np.sin(theta))
            new_state[StateIndex.Y] -= radius * (np.cos(theta_end) - np.cos(theta))
        else:
            theta_mid = theta + 0.5 * omega * dt
            new_state[StateIndex.X] += v * dt * np.cos(theta_mid)
            new_state[StateIndex.Y] += v * dt * np.sin(theta_mid)

        new_state[StateIndex.HEADING] = wrap_angle(theta + omega * dt)
        return new_state

    def _motion_partials(self, state: np.ndarray, dt: float,
                         v: float, omega: float) -> np.ndarray:
        """
        Partial derivatives of (x', y') with respect to (θ, v, ω).

        Returns:
            2x3 matrix [[∂x'/∂θ, ∂x'/∂v, ∂x'/∂ω], [∂y'/∂θ, ∂y'/∂v, ∂y'/∂ω]]
        """
        theta = state[StateIndex.HEADING]
        partials = np.zeros((2, 3))

        if abs(omega) > EPS:
            theta_end = theta + omega * dt
            d_sin = np.sin(theta_end) - np.sin(theta)
            d_cos = np.cos(theta_end) - np.cos(theta)
            radius = v / omega

            partials[0] = [radius * d_cos,
                           d_sin / omega,
                           -v / omega ** 2 * d_sin + radius * dt * np.cos(theta_end)]
            partials[1] = [radius * d_sin,
                           -d_cos / omega,
                           v / omega ** 2 * d_cos + radius * dt * np.sin(theta_end)]
        else:
            theta_mid = theta + 0.5 * omega * dt
            cos_mid, sin_mid = np.cos(theta_mid), np.sin(theta_mid)

            partials[0] = [-v * dt * sin_mid, dt * cos_mid, -0.5 * v * dt ** 2 * sin_mid]
            partials[1] = [v * dt * cos_mid, dt * sin_mid, 0.5 * v * dt ** 2 * cos_mid]

        return partials

    def jacobian(self, state: np.ndarray, dt: float,
                 control: Optional[Tuple[float, float]] = None) -> np.ndarray:
        """
        Transition Jacobian F = ∂f/∂x evaluated at ``state``.

        Returns:
            NxN matrix, N = layout dimension
        """
        v, omega = self._velocities(state, control)
        partials = self._motion_partials(state, dt, v, omega)

        F = np.eye(self.dimension)
        F[StateIndex.X, StateIndex.HEADING] = partials[0, 0]
        F[StateIndex.Y, StateIndex.HEADING] = partials[1, 0]

        if self.variant.has_kinematic_states:
            F[StateIndex.X, StateIndex.VELOCITY] = partials[0, 1]
            F[StateIndex.X, StateIndex.ANGULAR_RATE] = partials[0, 2]
            F[StateIndex.Y, StateIndex.VELOCITY] = partials[1, 1]
            F[StateIndex.Y, StateIndex.ANGULAR_RATE] = partials[1, 2]
            F[StateIndex.HEADING, StateIndex.ANGULAR_RATE] = dt

        return F

    def input_jacobian(self, state: np.ndarray, dt: float,
                       control: Tuple[float, float], track_width: float) -> np.ndarray:
        """
        Jacobian of the basic-layout transition with respect to the wheel
        velocities (v_L, v_R) that produced ``control``.

            v = (v_L + v_R)/2,  ω = (v_R − v_L)/L

        Returns:
            3x2 matrix G
        """
        v, omega = control
        partials = self._motion_partials(state, dt, v, omega)

        # ∂(v, ω)/∂(v_L, v_R)
        wheel_to_twist = np.array([[0.5, 0.5],
                                   [-1.0 / track_width, 1.0 / track_width]])

        G = np.zeros((self.dimension, 2))
        G[StateIndex.X] = partials[0, 1:] @ wheel_to_twist
        G[StateIndex.Y] = partials[1, 1:] @ wheel_to_twist
        G[StateIndex.HEADING] = np.array([0.0, dt]) @ wheel_to_twist
        return G

    def noise(self, dt: float) -> np.ndarray:
        """Process noise contribution Q·Δt."""
        return np.diag(self.noise_diagonal * dt)
