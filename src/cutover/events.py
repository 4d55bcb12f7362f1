"""
Migration events.

Events are immutable records of every state transition of a run. They are
published to the emitter, converted into count metrics, and consumed by the
alert evaluator.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from cutover.models import AlertSeverity
from cutover.registry import PhaseId


class MigrationEvent(BaseModel):
    """
    Base class for all migration events.

    The event_type field defaults to the class name, so subclasses never
    declare it.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Type name of the event (the class name)
        occurred_at: When the transition happened (UTC)
        run_id: The run this event belongs to
        phase_id: Phase the event concerns, if any
        sub_task_id: Sub-task the event concerns, if any
        metadata: Additional event metadata

    Example:
        >>> event = PhaseStarted(run_id=uuid4(), phase_id=PhaseId.CACHING_LAYER)
        >>> event.event_type
        'PhaseStarted'
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier",
    )
    event_type: str = Field(
        default="",
        description="Type of event (derived from class name)",
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When event occurred (UTC)",
    )
    run_id: UUID = Field(
        ...,
        description="Migration run this event belongs to",
    )
    phase_id: PhaseId | None = Field(
        default=None,
        description="Phase the event concerns",
    )
    sub_task_id: str | None = Field(
        default=None,
        description="Sub-task the event concerns",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event metadata",
    )

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        """Fill event_type with the class name when not provided."""
        if isinstance(data, dict) and not data.get("event_type"):
            data = {**data, "event_type": cls.__name__}
        return data

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        parts = [f"{self.event_type}(run={self.run_id}"]
        if self.phase_id is not None:
            parts.append(f"phase={self.phase_id.value}")
        if self.sub_task_id is not None:
            parts.append(f"sub_task={self.sub_task_id}")
        return ", ".join(parts) + ")"


class MigrationInitialized(MigrationEvent):
    total_phases: int = 10


class PhaseStarted(MigrationEvent):
    phase_id: PhaseId


class PhaseCompleted(MigrationEvent):
    phase_id: PhaseId
    duration_seconds: float | None = None


class PhaseFailed(MigrationEvent):
    """Emitted once when a phase fails, either by exhausted retries or abort."""

    phase_id: PhaseId
    reason: str = ""


class SubTaskStarted(MigrationEvent):
    phase_id: PhaseId
    sub_task_id: str
    attempt: int = 1


class SubTaskCompleted(MigrationEvent):
    phase_id: PhaseId
    sub_task_id: str
    attempt: int = 1
    bytes_processed: int | None = None


class SubTaskFailed(MigrationEvent):
    """
    Emitted for every failed report.

    will_retry is True when the sub-task was re-queued instead of
    failing its phase.
    """

    phase_id: PhaseId
    sub_task_id: str
    attempt: int = 1
    error_detail: str | None = None
    will_retry: bool = False


class MigrationPaused(MigrationEvent):
    pass


class MigrationResumed(MigrationEvent):
    pass


class MigrationCompleted(MigrationEvent):
    """Final completion signal, emitted after the last PhaseCompleted."""

    duration_seconds: float | None = None


class MigrationFailed(MigrationEvent):
    reason: str = ""


class AlertCreated(MigrationEvent):
    """
    Emitted once per alert firing.

    Attributes:
        alert_id: Identifier of the recorded alert
        severity: warning, error or critical
        rule_name: Name of the rule that fired
        message: Human-readable alert text
    """

    alert_id: UUID = Field(default_factory=uuid4)
    severity: AlertSeverity
    rule_name: str
    message: str = ""


__all__ = [
    "MigrationEvent",
    "MigrationInitialized",
    "PhaseStarted",
    "PhaseCompleted",
    "PhaseFailed",
    "SubTaskStarted",
    "SubTaskCompleted",
    "SubTaskFailed",
    "MigrationPaused",
    "MigrationResumed",
    "MigrationCompleted",
    "MigrationFailed",
    "AlertCreated",
]
