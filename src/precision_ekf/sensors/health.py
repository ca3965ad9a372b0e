"""
Per-channel health monitoring for the localization node.

The node records the outcome of every correction a channel attempts and
the timestamp of its latest sample. From that it derives:

- Operational status (functional/failed)
- Reliability score in [0.0, 1.0]
- Failure/recovery counts and consecutive failure streaks
- Staleness: no sample within the configured sensor timeout

Mathematical Model:
    reliability = max(0.0, 1.0 − min(0.9, decay · consecutive_failures))
    on failure, and

    reliability = min(1.0, reliability + recovery_rate)

    on success.

Time is taken from sample stamps, never from the wall clock, so replayed
data and simulations behave the same as live input.
"""

from typing import Any, Dict, Optional

from ..fusion.variants import MeasurementChannel


class SensorHealth:
    """
    Tracks one channel's correction outcomes and sample freshness.

    Attributes:
        channel: Channel being monitored
        is_operational: False after too many consecutive failures
        reliability: Float [0.0, 1.0] indicating measurement trustworthiness
        failure_count: Total number of rejected or skipped corrections
        success_count: Total number of applied corrections
        consecutive_failures: Current consecutive failure streak
        last_stamp: Timestamp of the latest sample, None before the first
    """

    def __init__(self, channel: MeasurementChannel, failure_threshold: int = 5,
                 reliability_decay: float = 0.15, recovery_rate: float = 0.05):
        """
        Initialize channel health monitor.

        Args:
            channel: Channel being monitored
            failure_threshold: Consecutive failures before marking inoperational
            reliability_decay: Reliability decrease per consecutive failure
            recovery_rate: Reliability increase per success
        """
        if failure_threshold < 1:
            raise ValueError(f"Failure threshold must be at least 1, got {failure_threshold}")

        self.channel = channel
        self._failure_threshold = failure_threshold
        self._reliability_decay = reliability_decay
        self._recovery_rate = recovery_rate
        self.reset_health()

    def record_sample(self, stamp: float) -> None:
        """Note the arrival time of a sample."""
        if self.last_stamp is None or stamp > self.last_stamp:
            self.last_stamp = stamp

    def record_failure(self) -> None:
        """
        Record a rejected or skipped correction.

        Marks the channel inoperational once the failure threshold is reached.
        """
        self.failure_count += 1
        self.consecutive_failures += 1

        penalty = min(0.9, self._reliability_decay * self.consecutive_failures)
        self.reliability = max(0.0, 1.0 - penalty)

        if self.consecutive_failures >= self._failure_threshold:
            self.is_operational = False

    def record_success(self) -> None:
        """Record an applied correction."""
        self.success_count += 1
        self.consecutive_failures = 0
        self.reliability = min(1.0, self.reliability + self._recovery_rate)

        if not self.is_operational and self.reliability > 0.5:
            self.is_operational = True

    def record_outcome(self, applied: bool) -> None:
        if applied:
            self.record_success()
        else:
            self.record_failure()

    def time_since_last_sample(self, now: float) -> Optional[float]:
        """Seconds since the latest sample, None if none arrived yet."""
        if self.last_stamp is None:
            return None
        return now - self.last_stamp

    def is_stale(self, now: float, timeout: float) -> bool:
        """
        Check whether the channel went silent.

        A channel that never delivered a sample counts as stale.
        """
        elapsed = self.time_since_last_sample(now)
        return elapsed is None or elapsed > timeout

    def get_failure_rate(self) -> float:
        """Failed corrections as a fraction of all attempts."""
        total = self.failure_count + self.success_count
        if total == 0:
            return 0.0
        return self.failure_count / total

    def reset_health(self) -> None:
        """Reset statistics to the initial state."""
        self.is_operational = True
        self.reliability = 1.0
        self.failure_count = 0
        self.success_count = 0
        self.consecutive_failures = 0
        self.last_stamp: Optional[float] = None

    def get_health_summary(self, now: Optional[float] = None,
                           timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Get health status summary.

        Args:
            now: Current time; staleness fields are included when given
            timeout: Sensor timeout used for the staleness check
        """
        summary = {
            'channel': self.channel.value,
            'operational': self.is_operational,
            'reliability': self.reliability,
            'failure_count': self.failure_count,
            'success_count': self.success_count,
            'consecutive_failures': self.consecutive_failures,
            'failure_rate': self.get_failure_rate(),
            'last_stamp': self.last_stamp,
        }
        if now is not None:
            summary['time_since_sample'] = self.time_since_last_sample(now)
            if timeout is not None:
                summary['stale'] = self.is_stale(now, timeout)
        return summary
