"""
Extended Kalman Filter for planar differential-drive localization.

This module fuses wheel odometry, a single-axis gyroscope and absolute
position fixes into an estimate of the robot's planar pose and, depending
on the configured layout, its velocities and wheel-velocity biases.

Mathematical Foundation:
    x(k+1) = f(x(k), u(k), Δt) + w(k),   w ~ N(0, Q·Δt)
    z(k)   = h(x(k)) + v(k),             v ~ N(0, R)

EKF Recursion:
    Prediction:
        x̂(k|k-1) = f(x̂(k-1|k-1), u, Δt)
        P(k|k-1) = F·P(k-1|k-1)·Fᵀ + Q·Δt

    Correction:
        y = z − h(x̂)                innovation
        S = H·P·Hᵀ + R              innovation covariance
        K = P·Hᵀ·S⁻¹                Kalman gain
        x̂ ← x̂ + K·y
        P ← (I − KH)·P·(I − KH)ᵀ + K·R·Kᵀ   (Joseph form)

The filter is single-threaded and not reentrant. It is only statistically
consistent when ``predict`` is called exactly once per elapsed interval,
before the corrections attributed to that interval.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.linalg

from ..errors import ConfigurationError, InputError, NumericalError
from .measurements import (
    DEFAULT_TRACK_WIDTH,
    AbsolutePositionMeasurementModel,
    InertialMeasurementModel,
    MeasurementModel,
    OdometryMeasurementModel,
)
from .process import ProcessModel, ProcessNoise, wrap_angle
from .variants import FilterVariant, MeasurementChannel, StateIndex

logger = logging.getLogger(__name__)

# Prior variances used when no initial covariance is supplied, per state index
DEFAULT_PRIOR_VARIANCES = (10.0, 10.0, 1.0, 1.0, 1.0, 0.1, 0.1)

ProcessNoiseLike = Union[ProcessNoise, Sequence[float], Mapping[str, float]]


@dataclass
class FilterDiagnostics:
    """Container for filter diagnostic information."""
    prediction_count: int
    correction_count: int
    skipped_corrections: int
    rejected_inputs: int
    covariance_trace: float
    condition_number: float
    last_innovation: Dict[str, np.ndarray] = field(default_factory=dict)


class CovarianceMatrix:
    """
    Covariance matrix management with symmetry and PSD guarantees.

    Mathematical Properties:
        - Symmetry: P = Pᵀ, enforced after every update
        - Positive semi-definiteness: all eigenvalues ≥ 0; eigenvalues
          pushed below zero by rounding are clamped back to zero

    Zero variances are legal and preserved, so a caller can express a
    perfectly known state component.
    """

    def __init__(self, size: int, initial: Optional[np.ndarray] = None,
                 symmetry_tolerance: float = 1e-9):
        """
        Initialize the covariance.

        Args:
            size: Dimension of the state space
            initial: Optional prior covariance. If None, a conservative
                     diagonal prior is used.
            symmetry_tolerance: Tolerance for the prior symmetry/PSD checks

        Raises:
            ConfigurationError: If the prior has the wrong shape, contains
                                NaN/inf, or is not symmetric PSD
        """
        if size <= 0:
            raise ConfigurationError(f"Matrix size must be positive, got {size}")

        self.size = size
        self._tolerance = symmetry_tolerance

        if initial is None:
            self._matrix = np.diag(np.asarray(DEFAULT_PRIOR_VARIANCES[:size], dtype=float))
        else:
            self._matrix = self._validate_prior(np.array(initial, dtype=float))

    def _validate_prior(self, matrix: np.ndarray) -> np.ndarray:
        if matrix.shape != (self.size, self.size):
            raise ConfigurationError(
                f"Covariance must have shape ({self.size}, {self.size}), got {matrix.shape}")
        if not np.all(np.isfinite(matrix)):
            raise ConfigurationError("Covariance contains NaN or infinite values")

        scale = max(1.0, float(np.max(np.abs(matrix))))
        if not np.allclose(matrix, matrix.T, atol=self._tolerance * scale):
            raise ConfigurationError("Covariance must be symmetric")
        if np.min(np.linalg.eigvalsh(matrix)) < -self._tolerance * scale:
            raise ConfigurationError("Covariance must be positive semi-definite")

        return (matrix + matrix.T) * 0.5

    @property
    def matrix(self) -> np.ndarray:
        """Get copy of covariance matrix."""
        return self._matrix.copy()

    def symmetrize(self) -> None:
        """Remove floating-point asymmetry: P ← (P + Pᵀ)/2."""
        self._matrix = (self._matrix + self._matrix.T) * 0.5

    def ensure_positive_semidefinite(self) -> bool:
        """
        Clamp negative eigenvalues to zero.

        Mathematical Approach:
            P = UΛUᵀ,  P_corrected = U·max(Λ, 0)·Uᵀ

        Returns:
            True if matrix was modified, False otherwise
        """
        eigenvals, eigenvecs = np.linalg.eigh(self._matrix)
        min_eval = np.min(eigenvals)
        if min_eval >= 0.0:
            return False

        eigenvals = np.maximum(eigenvals, 0.0)
        self._matrix = eigenvecs @ np.diag(eigenvals) @ eigenvecs.T
        self.symmetrize()

        logger.debug(f"Clamped eigenvalue {min_eval:.2e} to zero")
        return True

    def propagate(self, F: np.ndarray, Q: np.ndarray) -> None:
        """
        Prediction update P ← F·P·Fᵀ + Q.

        Args:
            F: Transition Jacobian
            Q: Total noise injected over the step
        """
        self._matrix = F @ self._matrix @ F.T + Q
        self.symmetrize()
        self.ensure_positive_semidefinite()

    def joseph_form_update(self, H: np.ndarray, R: np.ndarray, K: np.ndarray) -> None:
        """
        Joseph form covariance update for numerical stability.

        Implements: P⁺ = (I - KH)P⁻(I - KH)ᵀ + KRKᵀ

        Args:
            H: Measurement Jacobian matrix
            R: Measurement noise covariance
            K: Kalman gain matrix
        """
        I_KH = np.eye(self.size) - K @ H
        self._matrix = I_KH @ self._matrix @ I_KH.T + K @ R @ K.T
        self.symmetrize()
        self.ensure_positive_semidefinite()

    def get_uncertainty(self, state_indices: Union[slice, Sequence[int]]) -> np.ndarray:
        """
        Standard deviations for the given state components.

        Args:
            state_indices: Indices or slice for state components
        """
        return np.sqrt(np.clip(np.diag(self._matrix)[state_indices], 0.0, None))

    def get_condition_number(self) -> float:
        """Condition number κ(P); infinite for singular matrices."""
        with np.errstate(divide="ignore", invalid="ignore"):
            condition = np.linalg.cond(self._matrix)
        return float(condition) if np.isfinite(condition) else float("inf")

    def trace(self) -> float:
        return float(np.trace(self._matrix))


class PrecisionEKF:
    """
    Extended Kalman Filter over a selectable planar state layout.

    The filter owns its mean and covariance exclusively; both are mutated
    only inside ``predict`` and the ``correct_*`` methods and exposed as
    copies.

    Channels are enabled once after construction. Steady-state calls never
    raise: invalid inputs and numerically unusable corrections are logged,
    counted and reported through the boolean return value, and the prior
    state is preserved.

    Example:
        >>> ekf = PrecisionEKF(FilterVariant.KINEMATIC, 0.1)
        >>> ekf.enable_absolute_position(0.0025, 0.0025)
        True
        >>> ekf.predict()
        >>> ekf.correct_absolute_position(0.1, 0.0)
        True
    """

    def __init__(self, variant: Union[FilterVariant, str], initial_timestep: float,
                 process_noise: Optional[ProcessNoiseLike] = None,
                 initial_state: Optional[Sequence[float]] = None,
                 initial_covariance: Optional[np.ndarray] = None,
                 max_condition_number: float = 1e12):
        """
        Initialize the filter.

        Args:
            variant: Filter layout or its configuration name
            initial_timestep: Timestep used until ``set_timestep`` is called (s)
            process_noise: ProcessNoise, ordered variances or mapping;
                           defaults to ProcessNoise()
            initial_state: Optional prior mean; zero if omitted
            initial_covariance: Optional prior covariance
            max_condition_number: Innovation covariances above this
                                  condition number are not inverted

        Raises:
            ConfigurationError: On any invalid argument
        """
        if isinstance(variant, str):
            try:
                variant = FilterVariant.from_name(variant)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        if not isinstance(variant, FilterVariant):
            raise ConfigurationError(f"Unsupported filter variant {variant!r}")
        if not np.isfinite(initial_timestep) or initial_timestep <= 0:
            raise ConfigurationError(f"Initial timestep must be positive, got {initial_timestep}")

        self._variant = variant
        self._dimension = variant.dimension
        self._dt = float(initial_timestep)
        self._max_condition_number = max_condition_number

        noise = ProcessNoise() if process_noise is None else ProcessNoise.coerce(process_noise, self._dimension)
        self._process_model = ProcessModel(variant, noise)

        self._state = self._validate_initial_state(initial_state)
        self._covariance = CovarianceMatrix(self._dimension, initial_covariance)

        self._models: Dict[MeasurementChannel, MeasurementModel] = {}

        # Basic layout: latest wheel velocities, used as process input
        self._wheel_input: Optional[np.ndarray] = None

        self._prediction_count = 0
        self._correction_count = 0
        self._skipped_corrections = 0
        self._rejected_inputs = 0
        self._last_innovation: Dict[str, np.ndarray] = {}

        logger.info(f"Precision EKF initialized: {variant.value}, "
                    f"{self._dimension} states, dt={self._dt:.3f}s")

    def _validate_initial_state(self, initial_state: Optional[Sequence[float]]) -> np.ndarray:
        if initial_state is None:
            return np.zeros(self._dimension)

        state = np.array(initial_state, dtype=float).ravel()
        if len(state) != self._dimension:
            raise ConfigurationError(
                f"State vector must have {self._dimension} elements, got {len(state)}")
        if not np.all(np.isfinite(state)):
            raise ConfigurationError("State vector contains NaN or infinite values")

        state[StateIndex.HEADING] = wrap_angle(state[StateIndex.HEADING])
        return state

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _enable(self, factory, *args) -> bool:
        """Build a measurement model; report configuration failures as False."""
        try:
            model = factory(self._variant, *args)
        except ConfigurationError as e:
            logger.warning(f"Measurement channel not enabled: {e}")
            return False

        self._models[model.channel] = model
        logger.info(f"{model.channel.name} measurement enabled for {self._variant.value}")
        return True

    def enable_odometry(self, alpha: float, epsilon: float,
                        track_width: float = DEFAULT_TRACK_WIDTH) -> bool:
        """
        Enable the wheel odometry channel.

        Wheel velocity variance follows σ² = alpha·|v| + epsilon. In the basic
        layout odometry drives the process model instead of correcting it.

        Args:
            alpha: Variance growth per m/s of wheel speed (≥ 0)
            epsilon: Variance floor (≥ 0)
            track_width: Distance between the wheels (m, > 0)

        Returns:
            True if enabled, False if the parameters were rejected
        """
        return self._enable(OdometryMeasurementModel, alpha, epsilon, track_width)

    def enable_absolute_position(self, variance_x: float, variance_y: float) -> bool:
        """
        Enable the absolute position channel.

        Returns:
            True if enabled, False on negative or non-finite variance
        """
        return self._enable(AbsolutePositionMeasurementModel, variance_x, variance_y)

    def enable_inertial(self, variance_omega: float) -> bool:
        """
        Enable the gyroscope yaw-rate channel.

        Returns:
            True if enabled, False if the layout has no angular-rate state
            or the variance is invalid
        """
        return self._enable(InertialMeasurementModel, variance_omega)

    def is_enabled(self, channel: MeasurementChannel) -> bool:
        return channel in self._models

    def set_timestep(self, dt: float) -> bool:
        """
        Set the elapsed time used by the next prediction.

        Args:
            dt: Elapsed time since the previous prediction (s)

        Returns:
            True if accepted, False if dt is non-positive or non-finite;
            the previous timestep is kept in that case
        """
        try:
            self._dt = self._validate_timestep(dt)
        except InputError as e:
            self._rejected_inputs += 1
            logger.warning(f"Timestep rejected: {e}")
            return False
        return True

    @staticmethod
    def _validate_timestep(dt: float) -> float:
        if dt is None or not np.isfinite(dt) or dt <= 0:
            raise InputError(f"Time step must be positive, got {dt}")
        return float(dt)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self) -> None:
        """
        Prediction step of the Extended Kalman Filter.

        Implements:
            x̂(k|k-1) = f(x̂(k-1|k-1), u, Δt)
            P(k|k-1) = F·P·Fᵀ + G·M·Gᵀ + Q·Δt

        The G·M·Gᵀ term carries odometry input noise in the basic layout.
        """
        dt = self._dt
        control = None
        input_noise = 0.0

        if not self._variant.has_kinematic_states and self._wheel_input is not None:
            odometry = self._models[MeasurementChannel.ODOMETRY]
            control = odometry.control(self._wheel_input)
            G = self._process_model.input_jacobian(self._state, dt, control, odometry.track_width)
            input_noise = G @ odometry.noise(self._wheel_input) @ G.T

        F = self._process_model.jacobian(self._state, dt, control)
        self._state = self._process_model.transition(self._state, dt, control)
        self._covariance.propagate(F, self._process_model.noise(dt) + input_noise)

        self._prediction_count += 1
        logger.debug(f"Prediction step completed, dt={dt:.3f}s")

    # ------------------------------------------------------------------
    # Correction
    # ------------------------------------------------------------------

    def _measurement(self, channel: MeasurementChannel, *values: float) -> Optional[np.ndarray]:
        """Validate a raw observation; None means the call must be a no-op."""
        if channel not in self._models:
            logger.warning(f"{channel.name} correction ignored: channel not enabled")
            return None

        try:
            z = np.array(values, dtype=float)
            if not np.all(np.isfinite(z)):
                raise InputError(f"{channel.name} measurement contains NaN or infinite values: {values}")
        except (TypeError, ValueError) as e:
            self._rejected_inputs += 1
            logger.warning(f"{channel.name} measurement rejected: {e}")
            return None
        return z

    def correct_odometry(self, left_wheel_velocity: float, right_wheel_velocity: float) -> bool:
        """
        Correct with measured wheel velocities (m/s).

        In the basic layout the velocities become the process input of the
        next prediction.

        Returns:
            True if the measurement was applied
        """
        z = self._measurement(MeasurementChannel.ODOMETRY, left_wheel_velocity, right_wheel_velocity)
        if z is None:
            return False

        if not self._variant.has_kinematic_states:
            self._wheel_input = z
            self._correction_count += 1
            logger.debug(f"Odometry input stored: vL={z[0]:.3f}, vR={z[1]:.3f}")
            return True

        return self._correct(self._models[MeasurementChannel.ODOMETRY], z)

    def correct_inertial(self, angular_rate: float) -> bool:
        """
        Correct with a gyroscope yaw rate (rad/s).

        Returns:
            True if the measurement was applied
        """
        z = self._measurement(MeasurementChannel.INERTIAL, angular_rate)
        if z is None:
            return False
        return self._correct(self._models[MeasurementChannel.INERTIAL], z)

    def correct_absolute_position(self, x: float, y: float) -> bool:
        """
        Correct with an absolute position fix (m).

        Returns:
            True if the measurement was applied
        """
        z = self._measurement(MeasurementChannel.ABSOLUTE_POSITION, x, y)
        if z is None:
            return False
        return self._correct(self._models[MeasurementChannel.ABSOLUTE_POSITION], z)

    def _kalman_gain(self, P: np.ndarray, H: np.ndarray, S: np.ndarray) -> np.ndarray:
        """
        Compute K = P·Hᵀ·S⁻¹ through a Cholesky factorization of S.

        Raises:
            NumericalError: If S is singular or ill-conditioned
        """
        try:
            factor = scipy.linalg.cho_factor(S)
        except (scipy.linalg.LinAlgError, ValueError) as e:
            raise NumericalError(f"Singular innovation covariance: {e}") from e

        condition = np.linalg.cond(S)
        if not np.isfinite(condition) or condition > self._max_condition_number:
            raise NumericalError(f"Ill-conditioned innovation covariance: κ={condition:.2e}")

        # S and P are symmetric: K = (S⁻¹·H·P)ᵀ
        return scipy.linalg.cho_solve(factor, H @ P).T

    def _correct(self, model: MeasurementModel, z: np.ndarray) -> bool:
        """Generic EKF correction shared by every channel."""
        h = model.expected(self._state)
        H = model.jacobian(self._state)
        R = model.noise(z)
        P = self._covariance.matrix

        innovation = z - h
        S = H @ P @ H.T + R

        try:
            K = self._kalman_gain(P, H, S)
        except NumericalError as e:
            self._skipped_corrections += 1
            logger.warning(f"{model.channel.name} correction skipped: {e}")
            return False

        state = self._state + K @ innovation
        state[StateIndex.HEADING] = wrap_angle(state[StateIndex.HEADING])
        self._state = state
        self._covariance.joseph_form_update(H, R, K)

        self._correction_count += 1
        self._last_innovation[model.channel.value] = innovation
        logger.debug(f"{model.channel.name} correction applied: "
                     f"innovation={np.array2string(innovation, precision=4)}")
        return True

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def variant(self) -> FilterVariant:
        return self._variant

    @property
    def timestep(self) -> float:
        return self._dt

    def mean(self) -> np.ndarray:
        """Posterior mean (copy)."""
        return self._state.copy()

    def covariance(self) -> np.ndarray:
        """Posterior covariance (copy)."""
        return self._covariance.matrix

    def state_dimension(self) -> int:
        return self._dimension

    def pose(self) -> Tuple[float, float, float]:
        """Planar pose (x, y, heading)."""
        return (float(self._state[StateIndex.X]),
                float(self._state[StateIndex.Y]),
                float(self._state[StateIndex.HEADING]))

    def pose_covariance(self) -> np.ndarray:
        """3x3 covariance block of (x, y, heading)."""
        return self._covariance.matrix[:3, :3]

    def three_sigma(self) -> np.ndarray:
        """3·sqrt(diag P) for every active state."""
        return 3.0 * self._covariance.get_uncertainty(slice(0, self._dimension))

    def debug_snapshot(self) -> Dict[str, Dict[str, float]]:
        """
        Active state components with their 3-sigma bounds.

        Returns:
            {'state': {name: value}, 'three_sigma': {name: bound}}, keyed by
            the layout's own state names
        """
        names = self._variant.state_names
        bounds = self.three_sigma()
        return {
            'state': {name: float(value) for name, value in zip(names, self._state)},
            'three_sigma': {name: float(value) for name, value in zip(names, bounds)},
        }

    def get_diagnostics(self) -> FilterDiagnostics:
        return FilterDiagnostics(
            prediction_count=self._prediction_count,
            correction_count=self._correction_count,
            skipped_corrections=self._skipped_corrections,
            rejected_inputs=self._rejected_inputs,
            covariance_trace=self._covariance.trace(),
            condition_number=self._covariance.get_condition_number(),
            last_innovation={name: value.copy() for name, value in self._last_innovation.items()},
        )

    def reset(self, initial_state: Optional[Sequence[float]] = None,
              initial_covariance: Optional[np.ndarray] = None) -> None:
        """
        Reset mean, covariance and statistics; enabled channels are kept.

        Raises:
            ConfigurationError: If the new priors are invalid
        """
        state = self._validate_initial_state(initial_state)
        covariance = CovarianceMatrix(self._dimension, initial_covariance)

        self._state = state
        self._covariance = covariance
        self._wheel_input = None
        self._prediction_count = 0
        self._correction_count = 0
        self._skipped_corrections = 0
        self._rejected_inputs = 0
        self._last_innovation.clear()

        logger.info("Precision EKF reset")
