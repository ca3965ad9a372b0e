"""
Visualization components for precision localization.

Plots of debug records: state histories with 3-sigma bands and the
estimated planar trajectory.
"""

from .plotter import DebugPlotter

__all__ = [
    "DebugPlotter",
]
