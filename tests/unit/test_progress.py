"""
Unit tests for progress aggregation.

Tests cover:
- Weighted phase progress
- Overall run progress
- Throughput and error-rate counters
- Monotone cached phase progress
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cutover.models import Phase, PhaseState, SubTaskState
from cutover.progress import ProgressAggregator, overall_progress, phase_progress
from cutover.registry import PhaseDefinition, PhaseId, PhaseRegistry, SubTaskDefinition

T0 = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)


def make_phase(*weights: float, phase_id: PhaseId = PhaseId.CONTENT_STORAGE) -> Phase:
    tasks = tuple(SubTaskDefinition(f"t{i}", weight=w) for i, w in enumerate(weights))
    return Phase.from_definition(PhaseDefinition(phase_id, phase_id.value, tasks))


def complete(phase: Phase, *indexes: int) -> None:
    for i in indexes:
        phase.sub_tasks[f"t{i}"].state = SubTaskState.COMPLETED


class TestPhaseProgress:
    """Tests for phase_progress."""

    def test_no_completed_sub_tasks(self) -> None:
        assert phase_progress(make_phase(1, 1, 1)) == 0

    def test_two_of_three_floors_to_66(self) -> None:
        phase = make_phase(1, 1, 1)
        complete(phase, 0, 1)
        assert phase_progress(phase) == 66

    def test_weights(self) -> None:
        phase = make_phase(3, 1)
        complete(phase, 0)
        assert phase_progress(phase) == 75

    def test_all_complete_is_exactly_100(self) -> None:
        phase = make_phase(1, 1, 1)
        complete(phase, 0, 1, 2)
        assert phase_progress(phase) == 100

    def test_never_100_while_incomplete(self) -> None:
        phase = make_phase(999, 1)
        complete(phase, 0)
        assert phase_progress(phase) == 99

    def test_failed_and_cancelled_do_not_count(self) -> None:
        phase = make_phase(1, 1)
        phase.sub_tasks["t0"].state = SubTaskState.FAILED
        phase.sub_tasks["t1"].state = SubTaskState.CANCELLED
        assert phase_progress(phase) == 0


class TestOverallProgress:
    """Tests for overall_progress."""

    @pytest.fixture
    def phases(self, small_registry: PhaseRegistry) -> list[Phase]:
        return [Phase.from_definition(d) for d in small_registry]

    def test_initial(self, phases: list[Phase]) -> None:
        assert overall_progress(phases) == 0.0

    def test_completed_plus_active(self, phases: list[Phase]) -> None:
        phases[0].state = PhaseState.COMPLETED
        phases[1].state = PhaseState.COMPLETED
        phases[2].state = PhaseState.STARTED
        phases[2].progress = 50

        assert overall_progress(phases) == 25.0

    def test_failed_phase_keeps_frozen_progress(self, phases: list[Phase]) -> None:
        phases[0].state = PhaseState.FAILED
        phases[0].progress = 66

        assert overall_progress(phases) == 6.6

    def test_empty(self) -> None:
        assert overall_progress([]) == 0.0


class TestProgressAggregator:
    """Tests for ProgressAggregator."""

    def test_error_rate(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        assert aggregator.error_rate == 0.0

        aggregator.record_report(success=True, at=T0)
        aggregator.record_report(success=True, at=T0)
        aggregator.record_report(success=True, at=T0)
        rate = aggregator.record_report(success=False, at=T0)

        assert rate == 25.0
        assert aggregator.error_rate == 25.0
        assert aggregator.successful_reports == 3
        assert aggregator.failed_reports == 1

    def test_error_rate_rounded(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        aggregator.record_report(success=False, at=T0)
        aggregator.record_report(success=True, at=T0)
        aggregator.record_report(success=True, at=T0)

        assert aggregator.error_rate == 33.33

    def test_period_error_rate_resets_each_period(self) -> None:
        aggregator = ProgressAggregator(started_at=T0, period_seconds=300)
        for _ in range(100):
            aggregator.record_report(success=True, at=T0 + timedelta(seconds=30))

        aggregator.record_report(success=True, at=T0 + timedelta(minutes=6))
        rate = aggregator.record_report(success=False, at=T0 + timedelta(minutes=6))

        # 1 of 2 failed in 10:05-10:10, 1 of 102 since the start
        assert rate == 50.0
        assert aggregator.period_error_rate == 50.0
        assert aggregator.error_rate == 0.98

    def test_period_error_rate_within_one_period(self) -> None:
        aggregator = ProgressAggregator(started_at=T0, period_seconds=300)

        aggregator.record_report(success=False, at=T0 + timedelta(seconds=10))
        rate = aggregator.record_report(success=True, at=T0 + timedelta(seconds=290))

        assert rate == 50.0

    def test_late_report_counts_in_current_period(self) -> None:
        aggregator = ProgressAggregator(started_at=T0, period_seconds=300)
        aggregator.record_report(success=False, at=T0 + timedelta(minutes=6))

        rate = aggregator.record_report(success=True, at=T0 + timedelta(minutes=1))

        assert rate == 50.0

    def test_invalid_period_rejected(self) -> None:
        with pytest.raises(ValueError):
            ProgressAggregator(started_at=T0, period_seconds=0)

    def test_throughput(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)

        first = aggregator.record_bytes(5000, T0 + timedelta(seconds=10))
        second = aggregator.record_bytes(1000, T0 + timedelta(seconds=30))

        assert first.bytes_per_second == 500.0
        assert second.total_bytes == 6000
        assert second.bytes_per_second == 50.0
        assert aggregator.total_bytes == 6000
        assert aggregator.migration_speed == 50.0

    def test_same_instant_keeps_previous_speed(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        aggregator.record_bytes(100, T0 + timedelta(seconds=1))

        sample = aggregator.record_bytes(100, T0 + timedelta(seconds=1))

        assert sample.total_bytes == 200
        assert sample.bytes_per_second == 100.0

    def test_negative_bytes_rejected(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        with pytest.raises(ValueError):
            aggregator.record_bytes(-5, T0)

    def test_update_phase_stores_progress(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        phase = make_phase(1, 1)
        phase.state = PhaseState.STARTED

        assert aggregator.update_phase(phase) == 0
        complete(phase, 0)
        assert aggregator.update_phase(phase) == 50
        assert aggregator.update_phase(phase) == 50

        assert phase.progress == 50

    def test_update_phase_is_monotone(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        phase = make_phase(1, 1)
        phase.state = PhaseState.STARTED
        complete(phase, 0)
        aggregator.update_phase(phase)

        # A sub-task going back to pending (retry) never lowers progress
        phase.sub_tasks["t0"].state = SubTaskState.PENDING

        assert aggregator.update_phase(phase) == 50

    def test_failed_phase_is_frozen(self) -> None:
        aggregator = ProgressAggregator(started_at=T0)
        phase = make_phase(1, 1, 1)
        phase.progress = 66
        phase.state = PhaseState.FAILED
        complete(phase, 0, 1, 2)

        assert aggregator.update_phase(phase) == 66
