"""
Exceptions for the cutover orchestration engine.

Exception Hierarchy:
    CutoverError (base)
    +-- ConfigurationError
    +-- InvalidTransitionError
    +-- SubTaskExecutionFailure
    +-- PhaseFailure
    +-- RunNotFoundError
    +-- RunAlreadyExistsError

ConfigurationError is a programming-time error raised while building or
querying the phase registry. InvalidTransitionError is raised when a caller
violates the run state machine; the run is left untouched. SubTaskExecutionFailure
and PhaseFailure are recorded on the run rather than raised to executors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from cutover.registry import PhaseId


class CutoverError(Exception):
    """Base exception for the cutover engine."""

    pass


class ConfigurationError(CutoverError):
    """Raised when a phase or sub-task table is invalid or an unknown id is referenced."""

    pass


class InvalidTransitionError(CutoverError):
    """
    Raised when an operation is not valid in the current state.

    Attributes:
        run_id: The run the operation targeted.
        subject: What was being transitioned ("run" or a sub-task path).
        current_state: The state the subject was in.
        operation: The rejected operation name.
    """

    def __init__(
        self,
        run_id: UUID,
        subject: str,
        current_state: str,
        operation: str,
    ) -> None:
        self.run_id = run_id
        self.subject = subject
        self.current_state = current_state
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {subject} of run {run_id} in state {current_state}"
        )


class SubTaskExecutionFailure(CutoverError):
    """
    A failed sub-task attempt reported by an executor.

    Recorded on the sub-task; retried with backoff until the retry
    limit is reached.

    Attributes:
        run_id: Owning run.
        phase_id: Owning phase.
        sub_task_id: Failed sub-task.
        attempt: 1-based attempt number that failed.
        detail: Executor-supplied error detail, if any.
    """

    def __init__(
        self,
        run_id: UUID,
        phase_id: PhaseId,
        sub_task_id: str,
        attempt: int,
        detail: str | None = None,
    ) -> None:
        self.run_id = run_id
        self.phase_id = phase_id
        self.sub_task_id = sub_task_id
        self.attempt = attempt
        self.detail = detail
        detail_info = f": {detail}" if detail else ""
        super().__init__(
            f"Sub-task {phase_id.value}/{sub_task_id} failed on attempt {attempt}{detail_info}"
        )


class PhaseFailure(CutoverError):
    """
    A phase that failed terminally, either by exhausted retries or abort.

    Stored as the failure cause of the run. A failed phase is never
    restarted; a new run must be created.
    """

    def __init__(self, run_id: UUID, phase_id: PhaseId | None, reason: str) -> None:
        self.run_id = run_id
        self.phase_id = phase_id
        self.reason = reason
        phase_info = f" in phase {phase_id.value}" if phase_id is not None else ""
        super().__init__(f"Run {run_id} failed{phase_info}: {reason}")


class RunNotFoundError(CutoverError):
    """Raised when a run id is not known to the coordinator."""

    def __init__(self, run_id: UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Migration run not found: {run_id}")


class RunAlreadyExistsError(CutoverError):
    """Raised when creating a run with an id that is already registered."""

    def __init__(self, run_id: UUID) -> None:
        self.run_id = run_id
        super().__init__(f"Migration run already exists: {run_id}")


__all__ = [
    "CutoverError",
    "ConfigurationError",
    "InvalidTransitionError",
    "SubTaskExecutionFailure",
    "PhaseFailure",
    "RunNotFoundError",
    "RunAlreadyExistsError",
]
