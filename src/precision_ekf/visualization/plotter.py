"""
Offline plotting of filter debug records.

Classes:
    DebugPlotter: State histories with ±3σ bands and the estimated planar
                  trajectory against position fixes and ground truth
"""

import logging
from typing import Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from ..node.debug import DebugRecord

logger = logging.getLogger(__name__)

STATE_UNITS = {
    "x": "m",
    "y": "m",
    "heading": "rad",
    "velocity": "m/s",
    "angular_rate": "rad/s",
    "left_wheel_bias": "m/s",
    "right_wheel_bias": "m/s",
}


class DebugPlotter:
    """
    Plots sequences of DebugRecord.

    Attributes:
        figure_size: Matplotlib figure size in inches (width, height)
    """

    def __init__(self, figure_size: Tuple[int, int] = (12, 9)):
        self.figure_size = figure_size

    @staticmethod
    def _validate(records: Sequence[DebugRecord]) -> None:
        if not records:
            raise ValueError("No debug records to plot")
        if len({record.filter_type for record in records}) != 1:
            raise ValueError("Debug records mix several filter types")

    def plot_states(self, records: Sequence[DebugRecord]) -> plt.Figure:
        """
        One panel per state: estimate and its ±3σ band over time.

        Returns:
            The created figure
        """
        self._validate(records)
        names = list(records[0].state)
        stamps = np.array([record.stamp for record in records])

        figure, axes = plt.subplots(len(names), 1, sharex=True,
                                    figsize=self.figure_size, squeeze=False)
        for axis, name in zip(axes[:, 0], names):
            values = np.array([record.state[name] for record in records])
            bounds = np.array([record.three_sigma[name] for record in records])

            axis.plot(stamps, values, color='tab:blue', linewidth=1.5, label=name)
            axis.fill_between(stamps, values - bounds, values + bounds,
                              color='tab:blue', alpha=0.2, label='±3σ')
            axis.set_ylabel(f"{name} ({STATE_UNITS.get(name, '')})")
            axis.grid(True, alpha=0.3)

        axes[0, 0].set_title(f"{records[0].filter_type} state estimate")
        axes[0, 0].legend(loc='upper right')
        axes[-1, 0].set_xlabel('Time (s)')
        figure.tight_layout()

        logger.info(f"Plotted {len(names)} states over {len(records)} records")
        return figure

    def plot_trajectory(self, records: Sequence[DebugRecord],
                        truth: Optional[np.ndarray] = None) -> plt.Figure:
        """
        Estimated xy path with the raw position fixes.

        Args:
            records: Debug records in time order
            truth: Optional Nx3 or Nx2 array of true positions

        Returns:
            The created figure
        """
        self._validate(records)
        estimate = np.array([[record.state['x'], record.state['y']] for record in records])
        fixes = np.array([[record.inputs.get('gps_x'), record.inputs.get('gps_y')]
                          for record in records
                          if record.inputs.get('gps_x') is not None])

        figure, axis = plt.subplots(figsize=self.figure_size)
        if truth is not None:
            truth = np.asarray(truth)
            axis.plot(truth[:, 0], truth[:, 1], color='black', linewidth=1.0, label='Ground truth')
        if len(fixes):
            axis.scatter(fixes[:, 0], fixes[:, 1], s=6, color='tab:orange', alpha=0.6,
                         label='Position fixes')
        axis.plot(estimate[:, 0], estimate[:, 1], color='tab:blue', linewidth=2.0, label='EKF')

        axis.set_xlabel('X Position (m)')
        axis.set_ylabel('Y Position (m)')
        axis.set_aspect('equal', adjustable='datalim')
        axis.grid(True, alpha=0.3)
        axis.legend()
        figure.tight_layout()
        return figure

    @staticmethod
    def save(figure: plt.Figure, path: str) -> None:
        figure.savefig(path, dpi=150)
        logger.info(f"Saved figure to {path}")
