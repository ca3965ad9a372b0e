"""
Debug records and the sinks that receive them.

A debug record is a full-state snapshot taken each time the node
publishes: every state of the active layout, its 3-sigma bound
(3·sqrt(P_ii)) and the latest raw input of every channel. The estimator
never performs I/O itself; records are handed to an injected sink.

Each layout reports its own explicit field set; richer layouts include
the fields of simpler ones because their state vectors extend them.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..fusion.variants import FilterVariant

logger = logging.getLogger(__name__)

DEBUG_FIELDS: Dict[FilterVariant, Tuple[str, ...]] = {
    FilterVariant.BASIC: ("x", "y", "heading"),
    FilterVariant.KINEMATIC: ("x", "y", "heading", "velocity", "angular_rate"),
    FilterVariant.KINEMATIC_BIAS: ("x", "y", "heading", "velocity", "angular_rate",
                                   "left_wheel_bias", "right_wheel_bias"),
}

# Raw channel inputs carried in every record
INPUT_FIELDS = ("enc_vel", "enc_omg", "imu_omg", "gps_x", "gps_y")


@dataclass
class DebugRecord:
    """
    Debug snapshot of the filter.

    Attributes:
        stamp: Seconds since the first sample the node received
        filter_type: Configuration name of the layout
        state: State value per field
        three_sigma: 3-sigma bound per field
        inputs: Latest raw channel inputs; None for channels without data
    """
    stamp: float
    filter_type: str
    state: Dict[str, float]
    three_sigma: Dict[str, float]
    inputs: Dict[str, Optional[float]] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, variant: FilterVariant, stamp: float,
                      snapshot: Mapping[str, Mapping[str, float]],
                      inputs: Mapping[str, Optional[float]]) -> "DebugRecord":
        """
        Select the variant's debug fields from a filter snapshot.

        Args:
            variant: Active layout
            stamp: Relative timestamp (s)
            snapshot: Output of ``PrecisionEKF.debug_snapshot``
            inputs: Raw channel inputs keyed by INPUT_FIELDS
        """
        names = DEBUG_FIELDS[variant]
        return cls(
            stamp=stamp,
            filter_type=variant.value,
            state={name: snapshot['state'][name] for name in names},
            three_sigma={name: snapshot['three_sigma'][name] for name in names},
            inputs={name: inputs.get(name) for name in INPUT_FIELDS},
        )

    def as_dict(self) -> Dict[str, Any]:
        """Flat representation, e.g. {'x': .., 'err_x': .., 'gps_x': ..}."""
        flat: Dict[str, Any] = {'stamp': self.stamp, 'filter_type': self.filter_type}
        for name, value in self.state.items():
            flat[name] = value
            flat[f"err_{name}"] = self.three_sigma[name]
        flat.update(self.inputs)
        return flat


class DebugSink:
    """Receiver of debug records."""

    def write(self, record: DebugRecord) -> None:
        raise NotImplementedError


class MemoryDebugSink(DebugSink):
    """
    Keeps records in memory for offline inspection and plotting.

    Args:
        maxlen: Keep only the newest ``maxlen`` records; unbounded if None
    """

    def __init__(self, maxlen: Optional[int] = None):
        self._records = deque(maxlen=maxlen)

    def write(self, record: DebugRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> List[DebugRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class LoggingDebugSink(DebugSink):
    """Emits each record as one structured log line."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.DEBUG):
        self._logger = log or logger
        self._level = level

    def write(self, record: DebugRecord) -> None:
        self._logger.log(self._level, "ekf_debug %s", record.as_dict())
