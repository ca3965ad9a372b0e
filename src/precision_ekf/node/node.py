"""
Localization node: the thin shell around one PrecisionEKF instance.

Timing Model:
    One channel is the prediction authority (by default the absolute
    position channel). Each of its samples drives a full cycle:

        Δt = stamp − previous authority stamp
        set_timestep(Δt) → predict() → correct(sample) → publish()

    Samples of the other channels only correct the current state between
    authority arrivals, against the state of the latest prediction.

The node is single-threaded. Callers feeding it from several threads must
serialize the ``handle_*`` calls.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from ..errors import ConfigurationError
from ..fusion.kalman import PrecisionEKF
from ..fusion.variants import MeasurementChannel
from ..sensors.health import SensorHealth
from ..sensors.samples import AbsolutePositionSample, InertialSample, OdometrySample
from .config import NodeConfig
from .debug import DebugRecord, DebugSink, LoggingDebugSink

logger = logging.getLogger(__name__)

Sample = Union[OdometrySample, InertialSample, AbsolutePositionSample]


@dataclass
class PoseWithCovarianceStamped:
    """
    Published planar pose estimate.

    Attributes:
        frame_id: Frame the pose is expressed in
        stamp: Timestamp of the sample that produced the estimate (s)
        x, y: Position (m)
        heading: Yaw (rad)
        covariance: 3x3 covariance of (x, y, heading)
    """
    frame_id: str
    stamp: float
    x: float
    y: float
    heading: float
    covariance: np.ndarray

    @property
    def orientation(self) -> Tuple[float, float, float, float]:
        """Yaw-only quaternion (x, y, z, w)."""
        half = 0.5 * self.heading
        return (0.0, 0.0, float(np.sin(half)), float(np.cos(half)))

    def covariance_6x6(self) -> np.ndarray:
        """
        Covariance in the 6-DOF (x, y, z, roll, pitch, yaw) layout.

        Unobserved components are zero. ``.ravel()`` gives the 36-element
        row-major array pose messages carry.
        """
        indices = [0, 1, 5]
        full = np.zeros((6, 6))
        full[np.ix_(indices, indices)] = self.covariance
        return full


class PrecisionEKFNode:
    """
    Context object owning one filter and its sensor plumbing.

    Attributes:
        config: Node parameters
        filter: The owned PrecisionEKF
        authority: Channel whose samples trigger predictions
        health: Per-channel SensorHealth
        latest_pose: Last published pose, None before the first publish
    """

    def __init__(self, config: Optional[NodeConfig] = None,
                 debug_sink: Optional[DebugSink] = None):
        """
        Build the filter and enable the configured channels.

        Args:
            config: Node parameters; defaults to NodeConfig()
            debug_sink: Receiver for debug records, used only when
                        ``config.debug`` is set. Records are logged when
                        debug is set and no sink is given.

        Raises:
            ConfigurationError: If the prediction authority channel could
                                not be enabled
        """
        self.config = config or NodeConfig()
        variant = self.config.variant
        logger.info(f"Setting filter type to: {variant.value}")

        self.filter = PrecisionEKF(variant, self.config.initial_timestep,
                                   self.config.process_noise())
        self._enable_channels()

        self.authority = self.config.authority_channel
        if not self.filter.is_enabled(self.authority):
            raise ConfigurationError(
                f"Prediction authority {self.authority.name} is not an enabled channel")

        self.health = {channel: SensorHealth(channel) for channel in MeasurementChannel}

        self._debug_sink: Optional[DebugSink] = None
        if self.config.debug:
            self._debug_sink = debug_sink if debug_sink is not None else LoggingDebugSink()

        self._pose_listeners: List[Callable[[PoseWithCovarianceStamped], None]] = []
        self._start_time: Optional[float] = None
        self._last_authority_stamp: Optional[float] = None
        self._raw_inputs: Dict[str, Optional[float]] = {}
        self.latest_pose: Optional[PoseWithCovarianceStamped] = None

    def _enable_channels(self) -> None:
        config = self.config

        if config.odom_used:
            if not self.filter.enable_odometry(config.sigma_meas_odom_alpha,
                                               config.sigma_meas_odom_epsilon,
                                               config.odom_track):
                logger.warning("Tried to initialize Odometry measurement but failed")
        else:
            logger.info("Odom sensor will NOT be used")

        if config.gps_used:
            if not self.filter.enable_absolute_position(config.sigma_meas_gps_x ** 2,
                                                        config.sigma_meas_gps_y ** 2):
                logger.warning("Tried to initialize GPS measurement but failed")
        else:
            logger.info("GPS sensor will NOT be used")

        if config.imu_used:
            if not self.filter.enable_inertial(config.sigma_meas_imu_omg ** 2):
                logger.warning("Tried to initialize IMU measurement but failed")
        else:
            logger.info("IMU sensor will NOT be used")

    def add_pose_listener(self, callback: Callable[[PoseWithCovarianceStamped], None]) -> None:
        """Register a callback invoked with every published pose."""
        self._pose_listeners.append(callback)

    # ------------------------------------------------------------------
    # Sample handling
    # ------------------------------------------------------------------

    def handle_odometry(self, sample: OdometrySample) -> bool:
        """Convert the twist to wheel velocities and correct."""
        track = self.config.odom_track
        return self._process(sample.channel, sample.stamp,
                             {'enc_vel': sample.linear_velocity,
                              'enc_omg': sample.angular_velocity},
                             lambda: self.filter.correct_odometry(*sample.wheel_velocities(track)))

    def handle_inertial(self, sample: InertialSample) -> bool:
        return self._process(sample.channel, sample.stamp,
                             {'imu_omg': sample.angular_rate},
                             lambda: self.filter.correct_inertial(sample.angular_rate))

    def handle_absolute_position(self, sample: AbsolutePositionSample) -> bool:
        return self._process(sample.channel, sample.stamp,
                             {'gps_x': sample.x, 'gps_y': sample.y},
                             lambda: self.filter.correct_absolute_position(sample.x, sample.y))

    def handle_sample(self, sample: Sample) -> bool:
        """Dispatch a sample of any channel."""
        if isinstance(sample, OdometrySample):
            return self.handle_odometry(sample)
        if isinstance(sample, InertialSample):
            return self.handle_inertial(sample)
        if isinstance(sample, AbsolutePositionSample):
            return self.handle_absolute_position(sample)
        raise TypeError(f"Unsupported sample type {type(sample).__name__}")

    @staticmethod
    def _all_finite(*values: Any) -> bool:
        try:
            return bool(np.all(np.isfinite(np.array(values, dtype=float))))
        except (TypeError, ValueError):
            return False

    def _process(self, channel: MeasurementChannel, stamp: float,
                 inputs: Dict[str, float], correct: Callable[[], bool]) -> bool:
        """
        Run the correction for one sample, preceded by a prediction when
        the sample belongs to the prediction authority.

        Samples with an invalid stamp or a non-finite reading are rejected
        before the filter is touched: no prediction, no correction, no
        publish. They count as failures of their channel.

        Args:
            channel: Channel the sample belongs to
            stamp: Sample timestamp (s)
            inputs: Raw readings, keyed by debug input field
            correct: Applies the sample's correction to the filter

        Returns:
            True if the correction was applied
        """
        if not self.filter.is_enabled(channel):
            logger.debug(f"{channel.name} sample ignored: channel not enabled")
            return False

        health = self.health[channel]

        if not self._all_finite(stamp):
            logger.warning(f"{channel.name} sample rejected: invalid stamp {stamp}")
            health.record_failure()
            return False

        if not self._all_finite(*inputs.values()):
            logger.warning(f"{channel.name} sample at {stamp:.3f}s rejected: "
                           f"non-finite reading {inputs}")
            health.record_failure()
            return False

        self._raw_inputs.update(inputs)
        if self._start_time is None:
            self._start_time = stamp
        health.record_sample(stamp)

        if channel is not self.authority:
            applied = correct()
            health.record_outcome(applied)
            return applied

        if not self._advance_to(stamp):
            health.record_failure()
            return False

        applied = correct()
        health.record_outcome(applied)
        self.publish(stamp)
        return applied

    def _advance_to(self, stamp: float) -> bool:
        """Predict across the gap since the previous authority sample."""
        if self._last_authority_stamp is None:
            dt = self.config.initial_timestep
        else:
            dt = stamp - self._last_authority_stamp

        if not self.filter.set_timestep(dt):
            logger.warning(f"{self.authority.name} sample at {stamp:.3f}s skipped: "
                           f"non-positive gap {dt:.3f}s since previous arrival")
            return False

        self._last_authority_stamp = stamp
        self.filter.predict()
        logger.debug(f"System update at {stamp:.3f}s, elapsed {dt:.3f}s")
        return True

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def current_pose(self, stamp: float) -> PoseWithCovarianceStamped:
        x, y, heading = self.filter.pose()
        return PoseWithCovarianceStamped(
            frame_id=self.config.global_frame_id,
            stamp=stamp,
            x=x,
            y=y,
            heading=heading,
            covariance=self.filter.pose_covariance(),
        )

    def publish(self, stamp: float) -> PoseWithCovarianceStamped:
        """
        Publish the current estimate to every pose listener and, in debug
        mode, write a debug record.
        """
        pose = self.current_pose(stamp)
        self.latest_pose = pose
        for listener in self._pose_listeners:
            listener(pose)

        if self._debug_sink is not None:
            self._debug_sink.write(self.debug_record(stamp))

        return pose

    def debug_record(self, stamp: float) -> DebugRecord:
        """Debug snapshot stamped relative to the first received sample."""
        start = self._start_time if self._start_time is not None else stamp
        return DebugRecord.from_snapshot(self.filter.variant, stamp - start,
                                         self.filter.debug_snapshot(), self._raw_inputs)

    def channel_status(self, now: float) -> Dict[str, Dict[str, Any]]:
        """Health summary of every enabled channel at time ``now``."""
        return {
            channel.value: self.health[channel].get_health_summary(now, self.config.sensor_timeout)
            for channel in MeasurementChannel
            if self.filter.is_enabled(channel)
        }
