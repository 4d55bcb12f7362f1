"""
Data models for the cutover orchestration engine.

Models in this module:

Enums:
    - RunState: Lifecycle states of a migration run
    - PhaseState: Lifecycle states of a phase
    - SubTaskState: Lifecycle states of a sub-task
    - Outcome: Outcome reported by an executor
    - AlertSeverity: Severity carried by AlertCreated

Configuration:
    - OrchestratorConfig: Concurrency, retry and metric settings

Runtime records (mutated only by the orchestrator):
    - SubTask
    - Phase
    - MigrationRun

Snapshots (immutable, returned to operators):
    - PhaseStatus
    - RunStatus
    - PhaseTimelineEntry
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from cutover.registry import PhaseDefinition, PhaseId, SubTaskDefinition

if TYPE_CHECKING:
    from cutover.exceptions import PhaseFailure, SubTaskExecutionFailure


class RunState(Enum):
    """
    Lifecycle states of a migration run.

    State machine transitions:
        INITIALIZED -> RUNNING -> COMPLETED
                         ^  |
                         |  v
                        PAUSED
        Any non-terminal -> FAILED
    """

    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)

    @property
    def accepts_reports(self) -> bool:
        """Started sub-tasks may still report while the run is paused."""
        return self in (RunState.RUNNING, RunState.PAUSED)


class PhaseState(Enum):
    """Lifecycle states of a phase."""

    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PhaseState.COMPLETED, PhaseState.FAILED)


class SubTaskState(Enum):
    """
    Lifecycle states of a sub-task.

    CANCELLED marks sub-tasks that were pending or in flight when their
    phase failed or the run was aborted.
    """

    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SubTaskState.COMPLETED, SubTaskState.FAILED, SubTaskState.CANCELLED)


class Outcome(Enum):
    """Outcome of a sub-task attempt, as reported by an executor."""

    SUCCESS = "success"
    FAILURE = "failure"


class AlertSeverity(Enum):
    """Severity of an AlertCreated event; also the AlertType metric dimension."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Configuration for a migration run.

    Attributes:
        max_concurrent_sub_tasks: Upper bound on Started sub-tasks per phase.
        max_retries: Failed attempts re-queued before the phase fails.
        retry_initial_delay: Backoff before the first retry, in seconds (0 disables backoff).
        retry_max_delay: Cap on the backoff delay, in seconds.
        retry_exponential_base: Growth factor of the backoff.
        retry_jitter: Fraction of the delay added or removed at random.
        metric_period_seconds: Alignment of emitted metric timestamps.

    Example:
        >>> config = OrchestratorConfig(max_concurrent_sub_tasks=5, max_retries=2)
    """

    max_concurrent_sub_tasks: int = 3
    max_retries: int = 3
    retry_initial_delay: float = 5.0
    retry_max_delay: float = 300.0
    retry_exponential_base: float = 2.0
    retry_jitter: float = 0.1
    metric_period_seconds: int = 300

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_concurrent_sub_tasks < 1:
            raise ValueError(
                f"max_concurrent_sub_tasks must be >= 1, got {self.max_concurrent_sub_tasks}"
            )
        if self.max_retries < 0:
            raise ValueError(
                f"max_retries must be >= 0, got {self.max_retries}. Use 0 for no retries."
            )
        if self.retry_initial_delay < 0:
            raise ValueError(f"retry_initial_delay must be >= 0, got {self.retry_initial_delay}")
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError(
                f"retry_max_delay ({self.retry_max_delay}) must be >= "
                f"retry_initial_delay ({self.retry_initial_delay})"
            )
        if self.retry_exponential_base < 1.0:
            raise ValueError(
                f"retry_exponential_base must be >= 1.0, got {self.retry_exponential_base}"
            )
        if not 0.0 <= self.retry_jitter <= 1.0:
            raise ValueError(f"retry_jitter must be between 0.0 and 1.0, got {self.retry_jitter}")
        if self.metric_period_seconds < 1:
            raise ValueError(
                f"metric_period_seconds must be >= 1, got {self.metric_period_seconds}"
            )


@dataclass
class SubTask:
    """
    Runtime state of one sub-task.

    Attributes:
        definition: Registry definition (id and weight).
        state: Current state.
        retry_count: Number of failed attempts that were re-queued.
        last_failure: Most recent failed attempt, if any.
        started_at: When the current or last attempt started.
        completed_at: When the sub-task reached a terminal state.
        ready_at: Earliest time a re-queued attempt may start.
        cancellation: Signal set when the attempt is cancelled.
    """

    definition: SubTaskDefinition
    state: SubTaskState = SubTaskState.PENDING
    retry_count: int = 0
    last_failure: SubTaskExecutionFailure | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    ready_at: datetime | None = None
    cancellation: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def sub_task_id(self) -> str:
        return self.definition.sub_task_id

    @property
    def weight(self) -> float:
        return self.definition.weight

    @property
    def attempt(self) -> int:
        """1-based number of the current attempt."""
        return self.retry_count + 1

    @property
    def last_error(self) -> str | None:
        return self.last_failure.detail if self.last_failure is not None else None


@dataclass
class Phase:
    """Runtime state of one phase and its sub-tasks."""

    definition: PhaseDefinition
    state: PhaseState = PhaseState.PENDING
    progress: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    sub_tasks: dict[str, SubTask] = field(default_factory=dict)

    @classmethod
    def from_definition(cls, definition: PhaseDefinition) -> Phase:
        return cls(
            definition=definition,
            sub_tasks={t.sub_task_id: SubTask(definition=t) for t in definition.sub_tasks},
        )

    @property
    def phase_id(self) -> PhaseId:
        return self.definition.phase_id

    @property
    def ordinal(self) -> int:
        return self.definition.ordinal

    def in_state(self, *states: SubTaskState) -> list[SubTask]:
        """Sub-tasks in any of the given states, in declaration order."""
        return [t for t in self.sub_tasks.values() if t.state in states]

    @property
    def duration_minutes(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() / 60.0


@dataclass
class MigrationRun:
    """
    Root entity: one end-to-end migration attempt.

    Attributes:
        run_id: Unique run identifier.
        phases: Runtime phase records, in ordinal order.
        state: Overall run state.
        current_phase_index: Ordinal of the active (or last active) phase.
        created_at: When the run was initialized.
        started_at: When start() was accepted.
        ended_at: When the run became terminal.
        bytes_migrated: Cumulative bytes reported by executors.
        error_count: Cumulative failed reports.
        report_count: Cumulative accepted reports.
        failure: Cause recorded when the run failed.
    """

    run_id: UUID
    phases: list[Phase]
    state: RunState = RunState.INITIALIZED
    current_phase_index: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    ended_at: datetime | None = None
    bytes_migrated: int = 0
    error_count: int = 0
    report_count: int = 0
    failure: PhaseFailure | None = None

    @property
    def current_phase(self) -> Phase:
        return self.phases[self.current_phase_index]

    @property
    def completed_phases(self) -> int:
        return sum(1 for p in self.phases if p.state == PhaseState.COMPLETED)

    @property
    def failed_phases(self) -> int:
        return sum(1 for p in self.phases if p.state == PhaseState.FAILED)


@dataclass(frozen=True)
class PhaseStatus:
    """Point-in-time view of a phase."""

    phase_id: PhaseId
    ordinal: int
    name: str
    state: PhaseState
    progress: int
    sub_tasks_total: int
    sub_tasks_completed: int
    sub_tasks_in_flight: int
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id.value,
            "ordinal": self.ordinal,
            "name": self.name,
            "state": self.state.value,
            "progress": self.progress,
            "sub_tasks_total": self.sub_tasks_total,
            "sub_tasks_completed": self.sub_tasks_completed,
            "sub_tasks_in_flight": self.sub_tasks_in_flight,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class RunStatus:
    """
    Point-in-time view of a run, as returned by status().

    Always reflects the last successfully applied transition.
    """

    run_id: UUID
    state: RunState
    current_phase: PhaseId | None
    phase_progress: tuple[PhaseStatus, ...]
    overall_progress: float
    error_rate: float
    total_data_migrated: int
    migration_speed: float
    completed_phases: int
    failed_phases: int
    started_at: datetime | None = None
    ended_at: datetime | None = None
    failure_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "run_id": str(self.run_id),
            "state": self.state.value,
            "current_phase": self.current_phase.value if self.current_phase else None,
            "phase_progress": [p.to_dict() for p in self.phase_progress],
            "overall_progress": self.overall_progress,
            "error_rate": self.error_rate,
            "total_data_migrated": self.total_data_migrated,
            "migration_speed": self.migration_speed,
            "completed_phases": self.completed_phases,
            "failed_phases": self.failed_phases,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True)
class PhaseTimelineEntry:
    """One row of a run's phase timeline."""

    phase_id: PhaseId
    name: str
    state: PhaseState
    progress: int
    started_at: datetime | None
    completed_at: datetime | None
    duration_minutes: float | None
    estimated_duration_minutes: float


__all__ = [
    "RunState",
    "PhaseState",
    "SubTaskState",
    "Outcome",
    "AlertSeverity",
    "OrchestratorConfig",
    "SubTask",
    "Phase",
    "MigrationRun",
    "PhaseStatus",
    "RunStatus",
    "PhaseTimelineEntry",
]
