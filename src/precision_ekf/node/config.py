"""
Configuration surface of the localization node.

Parameter names and defaults follow the node's historical parameter set,
so an existing parameter file can be loaded unchanged with
``NodeConfig.from_dict``. Noise parameters are given as standard
deviations and squared into variances when the filter is built, except
the odometry alpha/epsilon pair which is already a variance law.
"""

import json
import logging
import numbers
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping

import numpy as np

from ..errors import ConfigurationError
from ..fusion.measurements import DEFAULT_TRACK_WIDTH
from ..fusion.process import ProcessNoise
from ..fusion.variants import FilterVariant, MeasurementChannel

logger = logging.getLogger(__name__)


def _check_type(name: str, value: Any, expected: type) -> None:
    """Reject parameter values of the wrong type, as JSON files can carry."""
    if expected is bool:
        valid = isinstance(value, (bool, np.bool_))
    elif expected is float:
        valid = isinstance(value, numbers.Real) and not isinstance(value, (bool, np.bool_))
    else:
        valid = isinstance(value, expected)
    if not valid:
        raise ConfigurationError(
            f"{name} must be of type {expected.__name__}, got {type(value).__name__} {value!r}")


@dataclass
class NodeConfig:
    """
    Localization node parameters.

    Attributes:
        global_frame_id: Frame the published pose is expressed in
        odom_frame_id: Odometry frame name, passed through for consumers
        base_frame_id: Robot body frame name, passed through for consumers
        sensor_timeout: Seconds without samples before a channel is stale
        filter_type: "ekf_3state", "ekf_5state" or "ekf_7state_verr"
        odom_used, imu_used, gps_used: Channel enable flags
        freq: Nominal update rate (Hz); sets the initial timestep
        sigma_sys_*: Process noise standard deviations
        sigma_meas_gps_x, sigma_meas_gps_y: Position fix standard deviations (m)
        sigma_meas_odom_alpha: Odometry variance growth per m/s of wheel speed
        sigma_meas_odom_epsilon: Odometry variance floor
        sigma_meas_imu_omg: Gyroscope standard deviation (rad/s)
        odom_track: Wheel track width (m)
        prediction_authority: Channel whose arrivals trigger a prediction
        debug: Emit debug records to the node's debug sink
    """
    global_frame_id: str = "map"
    odom_frame_id: str = "odom"
    base_frame_id: str = "base_link"
    sensor_timeout: float = 1.0

    filter_type: str = FilterVariant.KINEMATIC.value
    odom_used: bool = True
    imu_used: bool = True
    gps_used: bool = True
    freq: float = 10.0

    sigma_sys_x: float = 0.01
    sigma_sys_y: float = 0.01
    sigma_sys_tht: float = 0.05
    sigma_sys_vel: float = 0.5
    sigma_sys_omg: float = 0.5
    sigma_sys_vL: float = 0.05
    sigma_sys_vR: float = 0.05
    sigma_sys_imubias: float = 0.001

    sigma_meas_gps_x: float = 0.05
    sigma_meas_gps_y: float = 0.05
    sigma_meas_odom_alpha: float = 0.01
    sigma_meas_odom_epsilon: float = 0.0001
    sigma_meas_imu_omg: float = 0.05

    odom_track: float = DEFAULT_TRACK_WIDTH
    prediction_authority: str = MeasurementChannel.ABSOLUTE_POSITION.value
    debug: bool = False

    def __post_init__(self):
        """Validate node parameters."""
        for field in fields(self):
            _check_type(field.name, getattr(self, field.name), field.type)

        for field in fields(self):
            if field.name.startswith("sigma_"):
                value = getattr(self, field.name)
                if not np.isfinite(value) or value < 0:
                    raise ConfigurationError(f"{field.name} must be non-negative, got {value}")

        if not np.isfinite(self.freq) or self.freq <= 0:
            raise ConfigurationError(f"freq must be positive, got {self.freq}")
        if not np.isfinite(self.sensor_timeout) or self.sensor_timeout <= 0:
            raise ConfigurationError(f"sensor_timeout must be positive, got {self.sensor_timeout}")
        if not np.isfinite(self.odom_track) or self.odom_track <= 0:
            raise ConfigurationError(f"odom_track must be positive, got {self.odom_track}")

        try:
            MeasurementChannel.from_name(self.prediction_authority)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    @property
    def variant(self) -> FilterVariant:
        """Configured layout; unknown names fall back to ekf_5state."""
        return FilterVariant.from_name(self.filter_type, default=FilterVariant.KINEMATIC)

    @property
    def authority_channel(self) -> MeasurementChannel:
        return MeasurementChannel.from_name(self.prediction_authority)

    @property
    def initial_timestep(self) -> float:
        return 1.0 / max(self.freq, 1.0)

    def process_noise(self) -> ProcessNoise:
        """Process noise variances (sigma²) in filter order."""
        return ProcessNoise.from_sigmas(
            x=self.sigma_sys_x,
            y=self.sigma_sys_y,
            heading=self.sigma_sys_tht,
            velocity=self.sigma_sys_vel,
            angular_rate=self.sigma_sys_omg,
            left_wheel_velocity=self.sigma_sys_vL,
            right_wheel_velocity=self.sigma_sys_vR,
            gyro_bias=self.sigma_sys_imubias,
        )

    def channel_used(self, channel: MeasurementChannel) -> bool:
        return {
            MeasurementChannel.ODOMETRY: self.odom_used,
            MeasurementChannel.INERTIAL: self.imu_used,
            MeasurementChannel.ABSOLUTE_POSITION: self.gps_used,
        }[channel]

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> "NodeConfig":
        """
        Build a configuration from a parameter mapping.

        Raises:
            ConfigurationError: On unknown parameter names or invalid values
        """
        known = {field.name for field in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {unknown}")
        return cls(**dict(params))

    @classmethod
    def from_json_file(cls, path: str) -> "NodeConfig":
        """Load parameters from a JSON object file."""
        with open(path, encoding='utf-8') as f:
            params = json.load(f)
        if not isinstance(params, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")
        logger.info(f"Loaded node parameters from {path}")
        return cls.from_dict(params)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
