"""
Progress aggregation for migration runs.

Phase and overall percentages are pure functions of sub-task state. The
aggregator additionally keeps the counters that cannot be derived from
state alone: bytes migrated, throughput and the report error rates.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from cutover.metrics import DEFAULT_PERIOD_SECONDS, align_timestamp
from cutover.models import Phase, PhaseState, SubTaskState


def phase_progress(phase: Phase) -> int:
    """
    Weighted completion of a phase, floored to a whole percent.

    100 × Σ(weight of completed sub-tasks) / Σ(all weights). A phase whose
    sub-tasks are all complete is exactly 100.
    """
    tasks = list(phase.sub_tasks.values())
    if not tasks:
        return 0
    if all(t.state == SubTaskState.COMPLETED for t in tasks):
        return 100
    total = sum(t.weight for t in tasks)
    done = sum(t.weight for t in tasks if t.state == SubTaskState.COMPLETED)
    return min(99, math.floor(100 * done / total))


def overall_progress(phases: Sequence[Phase]) -> float:
    """
    Run-level percentage.

    ((completed phases × 100) + progress of the active phase) / total phases.
    """
    if not phases:
        return 0.0
    completed = sum(1 for p in phases if p.state == PhaseState.COMPLETED)
    active = sum(p.progress for p in phases if p.state in (PhaseState.STARTED, PhaseState.FAILED))
    return round((completed * 100 + active) / len(phases), 2)


@dataclass(frozen=True)
class ThroughputSample:
    """Result of recording a byte count."""

    total_bytes: int
    bytes_per_second: float


class ProgressAggregator:
    """
    Rolls sub-task outcomes up into progress, volume and error metrics.

    Two error rates are kept. ``error_rate`` covers every report since the
    run started and feeds the status snapshot. ``period_error_rate`` only
    covers reports in the current metric period and is what gets published
    as the ErrorRate gauge, so a failure burst late in a long run is not
    diluted by the successes before it.

    Example:
        >>> aggregator = ProgressAggregator(started_at=now)
        >>> aggregator.record_report(success=True, at=now)
        0.0
        >>> aggregator.record_bytes(1_048_576, now + timedelta(seconds=10))
        ThroughputSample(total_bytes=1048576, bytes_per_second=104857.6)
    """

    def __init__(
        self,
        started_at: datetime,
        period_seconds: int = DEFAULT_PERIOD_SECONDS,
    ) -> None:
        if period_seconds <= 0:
            raise ValueError(f"period_seconds must be > 0, got {period_seconds}")
        self._period_seconds = period_seconds
        self._last_sample_at = started_at
        self._total_bytes = 0
        self._speed = 0.0
        self._successes = 0
        self._failures = 0
        self._period_start = align_timestamp(started_at, period_seconds)
        self._period_successes = 0
        self._period_failures = 0

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    @property
    def migration_speed(self) -> float:
        """Bytes per second over the interval ending at the last byte sample."""
        return self._speed

    @property
    def successful_reports(self) -> int:
        return self._successes

    @property
    def failed_reports(self) -> int:
        return self._failures

    @property
    def error_rate(self) -> float:
        """Failed reports as a percentage of all reports since the run started."""
        return _percentage(self._failures, self._successes + self._failures)

    @property
    def period_error_rate(self) -> float:
        """Failed reports as a percentage of the reports in the current period."""
        return _percentage(self._period_failures, self._period_successes + self._period_failures)

    def record_report(self, success: bool, at: datetime) -> float:
        """
        Count an accepted outcome report.

        A report falling into a later metric period than the previous one
        starts a fresh period count. Reports stamped before the current
        period (clock skew) are counted in the current period.

        Returns:
            The error rate of the period the report was counted in
        """
        period_start = align_timestamp(at, self._period_seconds)
        if period_start > self._period_start:
            self._period_start = period_start
            self._period_successes = 0
            self._period_failures = 0
        if success:
            self._successes += 1
            self._period_successes += 1
        else:
            self._failures += 1
            self._period_failures += 1
        return self.period_error_rate

    def record_bytes(self, count: int, at: datetime) -> ThroughputSample:
        """
        Add processed bytes and recompute throughput.

        Speed is the bytes of this sample over the seconds elapsed since
        the previous sample (or since the run started).
        """
        if count < 0:
            raise ValueError(f"bytes_processed must be >= 0, got {count}")
        elapsed = (at - self._last_sample_at).total_seconds()
        self._total_bytes += count
        if elapsed > 0:
            self._speed = count / elapsed
            self._last_sample_at = at
        return ThroughputSample(total_bytes=self._total_bytes, bytes_per_second=self._speed)

    def update_phase(self, phase: Phase) -> int:
        """
        Recompute a phase's progress and store it on the phase.

        Failed phases keep their frozen value. Progress never moves
        backwards for a phase that has not failed.
        """
        if phase.state == PhaseState.FAILED:
            return phase.progress
        phase.progress = max(phase.progress, phase_progress(phase))
        return phase.progress


def _percentage(part: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(100.0 * part / total, 2)


__all__ = [
    "phase_progress",
    "overall_progress",
    "ThroughputSample",
    "ProgressAggregator",
]
