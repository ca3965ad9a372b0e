"""
Localization node around the precision EKF.

The node owns one filter, turns typed sensor samples into predictions and
corrections, publishes the planar pose with covariance and emits debug
records to an injected sink.
"""

from .config import NodeConfig
from .debug import DEBUG_FIELDS, DebugRecord, DebugSink, LoggingDebugSink, MemoryDebugSink
from .node import PoseWithCovarianceStamped, PrecisionEKFNode

__all__ = [
    "NodeConfig",
    "PrecisionEKFNode",
    "PoseWithCovarianceStamped",
    "DebugRecord",
    "DebugSink",
    "MemoryDebugSink",
    "LoggingDebugSink",
    "DEBUG_FIELDS",
]
