"""
Simulation components for precision localization.

A differential-drive ground truth with noisy odometry, gyroscope and
absolute position streams, used by the demo and integration tests.
"""

from .robot import (
    DifferentialDriveSimulator,
    SimulationParameters,
    SimulationResult,
    default_command,
)

__all__ = [
    "DifferentialDriveSimulator",
    "SimulationParameters",
    "SimulationResult",
    "default_command",
]
