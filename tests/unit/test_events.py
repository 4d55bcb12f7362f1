"""
Unit tests for migration events.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from pydantic import ValidationError

from cutover.events import (
    AlertCreated,
    MigrationCompleted,
    MigrationEvent,
    MigrationInitialized,
    PhaseFailed,
    PhaseStarted,
    SubTaskFailed,
)
from cutover.models import AlertSeverity
from cutover.registry import PhaseId


class TestEventType:
    """event_type is derived from the class name."""

    @pytest.mark.parametrize(
        ("event_class", "kwargs"),
        [
            (MigrationInitialized, {}),
            (PhaseStarted, {"phase_id": PhaseId.CACHING_LAYER}),
            (MigrationCompleted, {"duration_seconds": 12.5}),
        ],
    )
    def test_defaults_to_class_name(self, event_class, kwargs) -> None:
        event = event_class(run_id=uuid4(), **kwargs)
        assert event.event_type == event_class.__name__

    def test_explicit_event_type_kept(self) -> None:
        event = MigrationInitialized(run_id=uuid4(), event_type="Custom")
        assert event.event_type == "Custom"


class TestEventModel:
    """Tests for the pydantic event models."""

    def test_events_are_frozen(self) -> None:
        event = PhaseStarted(run_id=uuid4(), phase_id=PhaseId.CACHING_LAYER)

        with pytest.raises(ValidationError):
            event.phase_id = PhaseId.CONTENT_STORAGE  # type: ignore[misc]

    def test_phase_events_require_phase(self) -> None:
        with pytest.raises(ValidationError):
            PhaseFailed(run_id=uuid4())

    def test_phase_id_parsed_from_wire_value(self) -> None:
        event = PhaseStarted(run_id=uuid4(), phase_id="final-validation")
        assert event.phase_id is PhaseId.FINAL_VALIDATION

    def test_occurred_at_defaults_to_utc(self) -> None:
        event = MigrationInitialized(run_id=uuid4())
        assert event.occurred_at.tzinfo is not None

    def test_to_dict(self) -> None:
        run_id = uuid4()
        at = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)
        event = SubTaskFailed(
            run_id=run_id,
            phase_id=PhaseId.DATABASE_MIGRATION,
            sub_task_id="data-transfer",
            attempt=2,
            error_detail="timeout",
            will_retry=True,
            occurred_at=at,
        )

        data = event.to_dict()

        assert data["event_type"] == "SubTaskFailed"
        assert data["run_id"] == str(run_id)
        assert data["phase_id"] == "database-migration"
        assert data["attempt"] == 2
        assert data["will_retry"] is True
        assert data["occurred_at"].startswith("2026-01-05T10:00:00")

    def test_str(self) -> None:
        run_id = uuid4()
        event = SubTaskFailed(
            run_id=run_id, phase_id=PhaseId.CACHING_LAYER, sub_task_id="cache-warmup"
        )

        assert str(event) == (
            f"SubTaskFailed(run={run_id}, phase=caching-layer, sub_task=cache-warmup)"
        )

    def test_alert_created(self) -> None:
        event = AlertCreated(
            run_id=uuid4(),
            severity=AlertSeverity.CRITICAL,
            rule_name="migration-phase-failure",
            message="Phase content-storage failed",
        )

        assert isinstance(event, MigrationEvent)
        assert event.to_dict()["severity"] == "critical"
        assert event.alert_id is not None
