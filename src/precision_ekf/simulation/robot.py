"""
Differential-drive robot simulation producing noisy sensor streams.

The simulator integrates a ground-truth planar pose under a commanded
twist and emits the three sample types the localization node consumes,
each at its own rate.

Physical Model:
    v_L = v − ω·L/2,  v_R = v + ω·L/2          (inverse kinematics)
    exact arc integration of (x, y, θ) over each simulation tick

Sensor Models:
    Odometry   wheel velocities + constant bias + N(0, σ²_odom), reported
               as a twist (v, ω) through the forward kinematics
    Gyroscope  ω + constant bias + N(0, σ²_gyro)
    Position   (x, y) + N(0, σ²_pos)
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from ..fusion.measurements import twist_to_wheel_velocities, wheel_velocities_to_twist
from ..fusion.process import EPS, wrap_angle
from ..sensors.samples import AbsolutePositionSample, InertialSample, OdometrySample

logger = logging.getLogger(__name__)

TwistCommand = Callable[[float], Tuple[float, float]]


def default_command(t: float) -> Tuple[float, float]:
    """Constant 1 m/s with a slowly alternating turn rate."""
    return 1.0, 0.3 * np.sin(2.0 * np.pi * t / 20.0)


@dataclass
class SimulationParameters:
    """Rates, noise levels and biases of the simulated sensors."""

    track_width: float = 0.5          # Wheel track [m]
    tick: float = 0.001               # Integration step [s]
    odometry_rate: float = 50.0       # [Hz]
    inertial_rate: float = 50.0       # [Hz]
    position_rate: float = 10.0       # [Hz]
    wheel_noise_std: float = 0.02     # [m/s]
    gyro_noise_std: float = 0.01      # [rad/s]
    position_noise_std: float = 0.05  # [m]
    left_wheel_bias: float = 0.0      # [m/s]
    right_wheel_bias: float = 0.0     # [m/s]
    gyro_bias: float = 0.0            # [rad/s]

    def __post_init__(self):
        """Validate simulation parameters."""
        if self.track_width <= 0:
            raise ValueError(f"Track width must be positive, got {self.track_width}")
        if self.tick <= 0:
            raise ValueError(f"Tick must be positive, got {self.tick}")
        for name in ("odometry_rate", "inertial_rate", "position_rate"):
            rate = getattr(self, name)
            if rate <= 0 or rate * self.tick > 1.0:
                raise ValueError(f"{name} must be positive and at most 1/tick, got {rate}")
        for name in ("wheel_noise_std", "gyro_noise_std", "position_noise_std"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    def period_ticks(self, rate: float) -> int:
        return max(1, int(round(1.0 / (rate * self.tick))))


@dataclass
class SimulationResult:
    """
    Output of one simulation run.

    Attributes:
        samples: All sensor samples in stamp order
        times: Ground-truth timestamps, one per tick
        poses: Ground-truth (x, y, heading) per tick
    """
    samples: List = field(default_factory=list)
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    poses: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))

    def truth_at(self, stamp: float) -> np.ndarray:
        """Ground-truth pose interpolated at ``stamp``."""
        heading = np.unwrap(self.poses[:, 2])
        return np.array([
            np.interp(stamp, self.times, self.poses[:, 0]),
            np.interp(stamp, self.times, self.poses[:, 1]),
            wrap_angle(np.interp(stamp, self.times, heading)),
        ])


class DifferentialDriveSimulator:
    """
    Ground-truth robot plus noisy odometry, gyroscope and position sensors.

    Attributes:
        params: Simulation parameters
        pose: Current true pose [x, y, heading]
    """

    def __init__(self, params: Optional[SimulationParameters] = None,
                 command: Optional[TwistCommand] = None,
                 initial_pose: Tuple[float, float, float] = (0.0, 0.0, 0.0),
                 seed: Optional[int] = None):
        self.params = params or SimulationParameters()
        self.command = command or default_command
        self.pose = np.array(initial_pose, dtype=float)
        self._rng = np.random.default_rng(seed)

    def _integrate(self, v: float, omega: float, dt: float) -> None:
        x, y, theta = self.pose
        if abs(omega) > EPS:
            theta_end = theta + omega * dt
            x += v / omega * (np.sin(theta_end) - np.sin(theta))
            y -= v / omega * (np.cos(theta_end) - np.cos(theta))
        else:
            x += v * dt * np.cos(theta)
            y += v * dt * np.sin(theta)
        self.pose = np.array([x, y, wrap_angle(theta + omega * dt)])

    def _odometry(self, v: float, omega: float, stamp: float) -> OdometrySample:
        p = self.params
        left, right = twist_to_wheel_velocities(v, omega, p.track_width)
        left += p.left_wheel_bias + self._rng.normal(0.0, p.wheel_noise_std)
        right += p.right_wheel_bias + self._rng.normal(0.0, p.wheel_noise_std)
        measured_v, measured_omega = wheel_velocities_to_twist(left, right, p.track_width)
        return OdometrySample(measured_v, measured_omega, stamp)

    def _inertial(self, omega: float, stamp: float) -> InertialSample:
        p = self.params
        return InertialSample(omega + p.gyro_bias + self._rng.normal(0.0, p.gyro_noise_std), stamp)

    def _position(self, stamp: float) -> AbsolutePositionSample:
        noise = self._rng.normal(0.0, self.params.position_noise_std, 2)
        return AbsolutePositionSample(self.pose[0] + noise[0], self.pose[1] + noise[1], stamp)

    def run(self, duration: float) -> SimulationResult:
        """
        Simulate ``duration`` seconds.

        Returns:
            SimulationResult with samples in stamp order and the true path
        """
        if duration <= 0:
            raise ValueError(f"Duration must be positive, got {duration}")

        p = self.params
        odometry_period = p.period_ticks(p.odometry_rate)
        inertial_period = p.period_ticks(p.inertial_rate)
        position_period = p.period_ticks(p.position_rate)
        ticks = int(round(duration / p.tick))

        samples = []
        times = np.zeros(ticks + 1)
        poses = np.zeros((ticks + 1, 3))

        for k in range(ticks + 1):
            t = k * p.tick
            v, omega = self.command(t)

            times[k] = t
            poses[k] = self.pose

            if k % odometry_period == 0:
                samples.append(self._odometry(v, omega, t))
            if k % inertial_period == 0:
                samples.append(self._inertial(omega, t))
            if k % position_period == 0:
                samples.append(self._position(t))

            self._integrate(v, omega, p.tick)

        logger.info(f"Simulated {duration:.1f}s: {len(samples)} samples")
        return SimulationResult(samples=samples, times=times, poses=poses)
