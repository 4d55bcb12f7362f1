"""
RunOrchestrator - the state machine of a single migration run.

The orchestrator is the only writer of run, phase and sub-task state.
Every mutation (start, report_sub_task_outcome, pause, resume, abort) runs
to completion under the run's asyncio.Lock, including cascades: a sub-task
completing can complete its phase and start the next one inside the same
transition. Nothing inside the lock awaits external I/O. Events go to the
emitter with a non-blocking enqueue and sub-task assignments are handed to
the dispatcher only after the lock is released.

Run state machine:
    INITIALIZED -> RUNNING -> COMPLETED
                     ^  |
                     |  v
                    PAUSED
    INITIALIZED | RUNNING | PAUSED -> FAILED (exhausted retries or abort)

Usage:
    >>> orchestrator = RunOrchestrator(PhaseRegistry.default(), emitter, dispatcher=launch)
    >>> await orchestrator.start()
    >>> # executors report back
    >>> await orchestrator.report_sub_task_outcome(
    ...     PhaseId.INFRASTRUCTURE_SETUP, "network-provisioning", Outcome.SUCCESS,
    ...     bytes_processed=4096,
    ... )
    >>> orchestrator.status().overall_progress
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from cutover.emitter import MetricEmitter
from cutover.events import (
    MigrationCompleted,
    MigrationEvent,
    MigrationFailed,
    MigrationInitialized,
    MigrationPaused,
    MigrationResumed,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    SubTaskCompleted,
    SubTaskFailed,
    SubTaskStarted,
)
from cutover.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    PhaseFailure,
    SubTaskExecutionFailure,
)
from cutover.metrics import (
    DIMENSION_PHASE_ID,
    ERROR_RATE,
    MIGRATION_SPEED,
    PHASE_PROGRESS,
    TOTAL_DATA_MIGRATED,
    MetricDatum,
)
from cutover.models import (
    MigrationRun,
    OrchestratorConfig,
    Outcome,
    Phase,
    PhaseState,
    PhaseStatus,
    PhaseTimelineEntry,
    RunState,
    RunStatus,
    SubTask,
    SubTaskState,
)
from cutover.observability import (
    ATTR_ATTEMPT,
    ATTR_OUTCOME,
    ATTR_PHASE_ID,
    ATTR_RUN_ID,
    ATTR_RUN_STATE,
    ATTR_SUB_TASK_ID,
    Tracer,
    create_tracer,
)
from cutover.progress import ProgressAggregator, overall_progress
from cutover.registry import END_OF_RUN, PhaseId, PhaseRegistry
from cutover.retry import calculate_backoff

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SubTaskAssignment:
    """
    A started sub-task attempt handed to an executor.

    Executors must check ``cancelled`` before reporting; a report for a
    cancelled attempt is accepted as a no-op.

    Attributes:
        run_id: Owning run.
        phase_id: Owning phase.
        sub_task_id: Sub-task to execute.
        attempt: 1-based attempt number.
        cancellation: Set when the phase fails or the run is aborted.
    """

    run_id: UUID
    phase_id: PhaseId
    sub_task_id: str
    attempt: int
    cancellation: asyncio.Event

    @property
    def cancelled(self) -> bool:
        return self.cancellation.is_set()


SubTaskDispatcher = Callable[[SubTaskAssignment], Awaitable[None] | None]
"""Callback that hands a started sub-task to an external executor."""


class RunOrchestrator:
    """
    Drives one migration run through the ten phases.

    Construction initializes the run and emits MigrationInitialized.
    start() begins the first phase. From then on the run advances only
    through outcome reports and operator controls.

    Args:
        registry: Phase and sub-task table.
        emitter: Stream that receives events and metrics.
        config: Concurrency and retry settings (defaults if None).
        run_id: Run identifier (generated if None).
        dispatcher: Optional callback invoked for every started sub-task.
        clock: Source of the current time (UTC).
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
    """

    def __init__(
        self,
        registry: PhaseRegistry,
        emitter: MetricEmitter,
        config: OrchestratorConfig | None = None,
        *,
        run_id: UUID | None = None,
        dispatcher: SubTaskDispatcher | None = None,
        clock: Clock | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._registry = registry
        self._emitter = emitter
        self._config = config or OrchestratorConfig()
        self._dispatcher = dispatcher
        self._clock = clock or utcnow

        now = self._clock()
        self._run = MigrationRun(
            run_id=run_id or uuid4(),
            phases=[Phase.from_definition(d) for d in registry],
            created_at=now,
        )
        self._aggregator = self._new_aggregator(now)
        self._lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._retry_timer: asyncio.TimerHandle | None = None

        self._emit(MigrationInitialized(run_id=self.run_id, total_phases=len(registry), occurred_at=now))
        logger.info(
            "Initialized migration run %s with %d phases",
            self.run_id,
            len(registry),
            extra={"run_id": str(self.run_id)},
        )

    @property
    def run_id(self) -> UUID:
        return self._run.run_id

    @property
    def state(self) -> RunState:
        return self._run.state

    @property
    def run(self) -> MigrationRun:
        return self._run

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def aggregator(self) -> ProgressAggregator:
        return self._aggregator

    def phase(self, phase_id: PhaseId | str) -> Phase:
        return self._run.phases[self._registry.definition(phase_id).ordinal]

    def sub_task(self, phase_id: PhaseId | str, sub_task_id: str) -> SubTask:
        """
        Get the runtime record of a sub-task.

        Raises:
            ConfigurationError: If the phase or sub-task is not registered.
        """
        definition = self._registry.sub_task(phase_id, sub_task_id)
        return self.phase(phase_id).sub_tasks[definition.sub_task_id]

    def started_sub_tasks(self) -> list[SubTaskAssignment]:
        """Assignments for every sub-task currently Started, for polling executors."""
        return [
            self._assignment(phase, task)
            for phase in self._run.phases
            for task in phase.in_state(SubTaskState.STARTED)
        ]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start the run: begins the first phase and launches its sub-tasks.

        Raises:
            InvalidTransitionError: If the run is not Initialized.
        """
        with self._tracer.span("cutover.orchestrator.start", {ATTR_RUN_ID: str(self.run_id)}):
            async with self._lock:
                self._require_state("start", RunState.INITIALIZED)
                now = self._clock()
                self._run.state = RunState.RUNNING
                self._run.started_at = now
                self._aggregator = self._new_aggregator(now)
                logger.info(
                    "Started migration run %s",
                    self.run_id,
                    extra={"run_id": str(self.run_id)},
                )
                assignments = self._start_phase(self._run.phases[0], now)
            self._dispatch(assignments)

    async def report_sub_task_outcome(
        self,
        phase_id: PhaseId | str,
        sub_task_id: str,
        outcome: Outcome | str,
        *,
        bytes_processed: int | None = None,
        error_detail: str | None = None,
    ) -> bool:
        """
        Apply an executor's outcome report.

        Args:
            phase_id: Phase of the sub-task.
            sub_task_id: Reported sub-task.
            outcome: SUCCESS or FAILURE.
            bytes_processed: Bytes migrated by this attempt, if any.
            error_detail: Executor error text for failures.

        Returns:
            True if the report was applied, False if the sub-task was
            already terminal (duplicate or post-cancellation report).

        Raises:
            InvalidTransitionError: If the phase or sub-task is not part of
                this run, the run does not accept reports, or the sub-task
                is not Started. Nothing is changed.
            ValueError: If bytes_processed is negative.
        """
        try:
            phase_id = PhaseId.parse(phase_id)
            task = self.sub_task(phase_id, sub_task_id)
        except ConfigurationError as e:
            phase_label = phase_id.value if isinstance(phase_id, PhaseId) else phase_id
            raise InvalidTransitionError(
                self.run_id,
                f"sub-task {phase_label}/{sub_task_id}",
                "unknown",
                "report outcome for",
            ) from e
        outcome = Outcome(outcome)
        if bytes_processed is not None and bytes_processed < 0:
            raise ValueError(f"bytes_processed must be >= 0, got {bytes_processed}")

        with self._tracer.span(
            "cutover.orchestrator.report_outcome",
            {
                ATTR_RUN_ID: str(self.run_id),
                ATTR_PHASE_ID: phase_id.value,
                ATTR_SUB_TASK_ID: sub_task_id,
                ATTR_OUTCOME: outcome.value,
                ATTR_ATTEMPT: task.attempt,
            },
        ):
            async with self._lock:
                if task.state.is_terminal:
                    logger.debug(
                        "Ignoring report for terminal sub-task %s/%s (%s)",
                        phase_id.value,
                        sub_task_id,
                        task.state.value,
                        extra={"run_id": str(self.run_id), "phase_id": phase_id.value},
                    )
                    return False
                if not self._run.state.accepts_reports:
                    raise InvalidTransitionError(
                        self.run_id, "run", self._run.state.value, "report outcome for"
                    )
                if task.state != SubTaskState.STARTED:
                    raise InvalidTransitionError(
                        self.run_id,
                        f"sub-task {phase_id.value}/{sub_task_id}",
                        task.state.value,
                        "report outcome for",
                    )

                now = self._clock()
                phase = self.phase(phase_id)
                self._run.report_count += 1

                if bytes_processed is not None:
                    self._record_bytes(bytes_processed, now)

                success = outcome == Outcome.SUCCESS
                error_rate = self._aggregator.record_report(success, now)
                self._publish_gauge(ERROR_RATE, error_rate, now)

                if success:
                    assignments = self._complete_sub_task(phase, task, now, bytes_processed)
                else:
                    assignments = self._fail_sub_task(phase, task, now, error_detail)
            self._dispatch(assignments)
            return True

    async def pause(self) -> bool:
        """
        Stop starting new sub-tasks. In-flight sub-tasks still report.

        Returns:
            False if the run was already paused.

        Raises:
            InvalidTransitionError: If the run is neither Running nor Paused.
        """
        with self._tracer.span("cutover.orchestrator.pause", {ATTR_RUN_ID: str(self.run_id)}):
            async with self._lock:
                if self._run.state == RunState.PAUSED:
                    return False
                self._require_state("pause", RunState.RUNNING)
                self._run.state = RunState.PAUSED
                self._emit(MigrationPaused(run_id=self.run_id, occurred_at=self._clock()))
                logger.info("Paused migration run %s", self.run_id, extra={"run_id": str(self.run_id)})
                return True

    async def resume(self) -> bool:
        """
        Resume a paused run and start pending sub-tasks up to the limit.

        Returns:
            False if the run was already running.

        Raises:
            InvalidTransitionError: If the run is neither Paused nor Running.
        """
        with self._tracer.span("cutover.orchestrator.resume", {ATTR_RUN_ID: str(self.run_id)}):
            async with self._lock:
                if self._run.state == RunState.RUNNING:
                    return False
                self._require_state("resume", RunState.PAUSED)
                now = self._clock()
                self._run.state = RunState.RUNNING
                self._emit(MigrationResumed(run_id=self.run_id, occurred_at=now))
                logger.info("Resumed migration run %s", self.run_id, extra={"run_id": str(self.run_id)})
                assignments = self._fill_slots(self._run.current_phase, now)
            self._dispatch(assignments)
            return True

    async def abort(self, reason: str = "aborted by operator") -> None:
        """
        Force the run into Failed and cancel all outstanding sub-tasks.

        Raises:
            InvalidTransitionError: If the run is already terminal.
        """
        with self._tracer.span(
            "cutover.orchestrator.abort",
            {ATTR_RUN_ID: str(self.run_id), ATTR_RUN_STATE: self._run.state.value},
        ):
            async with self._lock:
                if self._run.state.is_terminal:
                    raise InvalidTransitionError(self.run_id, "run", self._run.state.value, "abort")
                now = self._clock()
                active = self._run.current_phase
                if active.state == PhaseState.STARTED:
                    self._fail_phase(active, now, reason)
                else:
                    self._fail_run(None, reason, now)

    async def close(self) -> None:
        """Cancel pending retry timers and wait for dispatcher calls to finish."""
        self._cancel_retry_timer()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self) -> RunStatus:
        """Snapshot of the last applied transition."""
        run = self._run
        current: PhaseId | None = None
        if run.state != RunState.INITIALIZED:
            current = run.current_phase.phase_id
        return RunStatus(
            run_id=run.run_id,
            state=run.state,
            current_phase=current,
            phase_progress=tuple(self._phase_status(p) for p in run.phases),
            overall_progress=overall_progress(run.phases),
            error_rate=self._aggregator.error_rate,
            total_data_migrated=run.bytes_migrated,
            migration_speed=self._aggregator.migration_speed,
            completed_phases=run.completed_phases,
            failed_phases=run.failed_phases,
            started_at=run.started_at,
            ended_at=run.ended_at,
            failure_reason=str(run.failure) if run.failure else None,
        )

    def timeline(self) -> list[PhaseTimelineEntry]:
        return [
            PhaseTimelineEntry(
                phase_id=p.phase_id,
                name=p.definition.name,
                state=p.state,
                progress=p.progress,
                started_at=p.started_at,
                completed_at=p.completed_at,
                duration_minutes=p.duration_minutes,
                estimated_duration_minutes=p.definition.estimated_duration_minutes,
            )
            for p in self._run.phases
        ]

    def estimate_completion(self) -> datetime | None:
        """
        Project when the run will finish.

        Remaining estimated minutes (the active phase counted by its
        unfinished share) are scaled by the average actual/estimated
        ratio of phases completed so far.

        Returns:
            The end time for completed runs, None for failed runs.
        """
        run = self._run
        if run.state == RunState.COMPLETED:
            return run.ended_at
        if run.state == RunState.FAILED:
            return None

        completed = [p for p in run.phases if p.state == PhaseState.COMPLETED]
        remaining = 0.0
        for p in run.phases:
            if p.state == PhaseState.COMPLETED:
                continue
            share = 1.0 - p.progress / 100.0 if p.state == PhaseState.STARTED else 1.0
            remaining += p.definition.estimated_duration_minutes * share

        multiplier = 1.0
        if completed:
            estimated = sum(p.definition.estimated_duration_minutes for p in completed)
            actual = sum(
                p.duration_minutes
                if p.duration_minutes is not None
                else p.definition.estimated_duration_minutes
                for p in completed
            )
            if estimated > 0:
                multiplier = actual / estimated

        return self._clock() + timedelta(minutes=remaining * multiplier)

    # ------------------------------------------------------------------
    # Transitions (called with the lock held)
    # ------------------------------------------------------------------

    def _require_state(self, operation: str, *allowed: RunState) -> None:
        if self._run.state not in allowed:
            raise InvalidTransitionError(self.run_id, "run", self._run.state.value, operation)

    def _start_phase(self, phase: Phase, now: datetime) -> list[SubTaskAssignment]:
        phase.state = PhaseState.STARTED
        phase.started_at = now
        self._run.current_phase_index = phase.ordinal
        self._emit(PhaseStarted(run_id=self.run_id, phase_id=phase.phase_id, occurred_at=now))
        self._publish_progress(phase, now)
        logger.info(
            "Phase %s started",
            phase.phase_id.value,
            extra={"run_id": str(self.run_id), "phase_id": phase.phase_id.value},
        )
        return self._fill_slots(phase, now)

    def _fill_slots(self, phase: Phase, now: datetime) -> list[SubTaskAssignment]:
        """Start eligible pending sub-tasks while slots are free and the run is running."""
        if self._run.state != RunState.RUNNING or phase.state != PhaseState.STARTED:
            return []

        in_flight = len(phase.in_state(SubTaskState.STARTED))
        assignments: list[SubTaskAssignment] = []
        next_ready: datetime | None = None

        for task in phase.in_state(SubTaskState.PENDING):
            if in_flight >= self._config.max_concurrent_sub_tasks:
                break
            if task.ready_at is not None and task.ready_at > now:
                if next_ready is None or task.ready_at < next_ready:
                    next_ready = task.ready_at
                continue
            assignments.append(self._start_sub_task(phase, task, now))
            in_flight += 1

        if next_ready is not None and in_flight < self._config.max_concurrent_sub_tasks:
            self._schedule_retry((next_ready - now).total_seconds())
        return assignments

    def _start_sub_task(self, phase: Phase, task: SubTask, now: datetime) -> SubTaskAssignment:
        task.state = SubTaskState.STARTED
        task.started_at = now
        task.ready_at = None
        task.cancellation = asyncio.Event()
        self._emit(
            SubTaskStarted(
                run_id=self.run_id,
                phase_id=phase.phase_id,
                sub_task_id=task.sub_task_id,
                attempt=task.attempt,
                occurred_at=now,
            )
        )
        logger.debug(
            "Sub-task %s/%s started (attempt %d)",
            phase.phase_id.value,
            task.sub_task_id,
            task.attempt,
            extra={
                "run_id": str(self.run_id),
                "phase_id": phase.phase_id.value,
                "sub_task_id": task.sub_task_id,
            },
        )
        return self._assignment(phase, task)

    def _complete_sub_task(
        self,
        phase: Phase,
        task: SubTask,
        now: datetime,
        bytes_processed: int | None,
    ) -> list[SubTaskAssignment]:
        task.state = SubTaskState.COMPLETED
        task.completed_at = now
        self._emit(
            SubTaskCompleted(
                run_id=self.run_id,
                phase_id=phase.phase_id,
                sub_task_id=task.sub_task_id,
                attempt=task.attempt,
                bytes_processed=bytes_processed,
                occurred_at=now,
            )
        )
        self._publish_progress(phase, now)

        if all(t.state == SubTaskState.COMPLETED for t in phase.sub_tasks.values()):
            return self._complete_phase(phase, now)
        return self._fill_slots(phase, now)

    def _fail_sub_task(
        self,
        phase: Phase,
        task: SubTask,
        now: datetime,
        error_detail: str | None,
    ) -> list[SubTaskAssignment]:
        failure = SubTaskExecutionFailure(
            self.run_id, phase.phase_id, task.sub_task_id, task.attempt, error_detail
        )
        task.last_failure = failure
        self._run.error_count += 1
        will_retry = task.retry_count < self._config.max_retries

        self._emit(
            SubTaskFailed(
                run_id=self.run_id,
                phase_id=phase.phase_id,
                sub_task_id=task.sub_task_id,
                attempt=task.attempt,
                error_detail=error_detail,
                will_retry=will_retry,
                occurred_at=now,
            )
        )
        self._publish_progress(phase, now)

        if will_retry:
            task.retry_count += 1
            task.state = SubTaskState.PENDING
            delay = calculate_backoff(task.retry_count, self._config)
            task.ready_at = now + timedelta(seconds=delay)
            logger.warning(
                "%s; retry %d of %d in %.1fs",
                failure,
                task.retry_count,
                self._config.max_retries,
                delay,
                extra={
                    "run_id": str(self.run_id),
                    "phase_id": phase.phase_id.value,
                    "sub_task_id": task.sub_task_id,
                },
            )
            return self._fill_slots(phase, now)

        task.state = SubTaskState.FAILED
        task.completed_at = now
        reason = f"sub-task {task.sub_task_id} failed after {task.attempt} attempt(s)"
        if error_detail:
            reason = f"{reason}: {error_detail}"
        self._fail_phase(phase, now, reason)
        return []

    def _complete_phase(self, phase: Phase, now: datetime) -> list[SubTaskAssignment]:
        phase.state = PhaseState.COMPLETED
        phase.completed_at = now
        duration = (now - phase.started_at).total_seconds() if phase.started_at else None
        self._emit(
            PhaseCompleted(
                run_id=self.run_id,
                phase_id=phase.phase_id,
                duration_seconds=duration,
                occurred_at=now,
            )
        )
        logger.info(
            "Phase %s completed",
            phase.phase_id.value,
            extra={"run_id": str(self.run_id), "phase_id": phase.phase_id.value},
        )

        nxt = self._registry.next_phase(phase.phase_id)
        if nxt is END_OF_RUN:
            self._complete_run(now)
            return []
        return self._start_phase(self._run.phases[nxt.ordinal], now)

    def _complete_run(self, now: datetime) -> None:
        run = self._run
        run.state = RunState.COMPLETED
        run.ended_at = now
        self._cancel_retry_timer()
        duration = (now - run.started_at).total_seconds() if run.started_at else None
        self._emit(MigrationCompleted(run_id=self.run_id, duration_seconds=duration, occurred_at=now))
        logger.info(
            "Migration run %s completed",
            self.run_id,
            extra={"run_id": str(self.run_id), "bytes_migrated": run.bytes_migrated},
        )

    def _fail_phase(self, phase: Phase, now: datetime, reason: str) -> None:
        phase.state = PhaseState.FAILED
        phase.completed_at = now
        for task in phase.in_state(SubTaskState.PENDING, SubTaskState.STARTED):
            task.state = SubTaskState.CANCELLED
            task.completed_at = now
            task.cancellation.set()
        self._emit(
            PhaseFailed(run_id=self.run_id, phase_id=phase.phase_id, reason=reason, occurred_at=now)
        )
        logger.error(
            "Phase %s failed: %s",
            phase.phase_id.value,
            reason,
            extra={"run_id": str(self.run_id), "phase_id": phase.phase_id.value},
        )
        self._fail_run(phase.phase_id, reason, now)

    def _fail_run(self, phase_id: PhaseId | None, reason: str, now: datetime) -> None:
        run = self._run
        run.state = RunState.FAILED
        run.ended_at = now
        run.failure = PhaseFailure(self.run_id, phase_id, reason)
        self._cancel_retry_timer()
        self._emit(MigrationFailed(run_id=self.run_id, phase_id=phase_id, reason=reason, occurred_at=now))
        logger.error(
            "Migration run %s failed: %s",
            self.run_id,
            reason,
            extra={"run_id": str(self.run_id), "run_state": run.state.value},
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _emit(self, event: MigrationEvent) -> None:
        self._emitter.publish_event(event)

    def _publish_gauge(self, name: str, value: float, now: datetime, **dimensions: str) -> None:
        self._emitter.publish_metric(
            MetricDatum.gauge(name, value, self.run_id, timestamp=now, **dimensions)
        )

    def _new_aggregator(self, now: datetime) -> ProgressAggregator:
        return ProgressAggregator(
            started_at=now, period_seconds=self._config.metric_period_seconds
        )

    def _publish_progress(self, phase: Phase, now: datetime) -> None:
        value = self._aggregator.update_phase(phase)
        self._publish_gauge(PHASE_PROGRESS, value, now, **{DIMENSION_PHASE_ID: phase.phase_id.value})

    def _record_bytes(self, count: int, now: datetime) -> None:
        sample = self._aggregator.record_bytes(count, now)
        self._run.bytes_migrated = sample.total_bytes
        self._publish_gauge(TOTAL_DATA_MIGRATED, sample.total_bytes, now)
        self._publish_gauge(MIGRATION_SPEED, sample.bytes_per_second, now)

    def _phase_status(self, phase: Phase) -> PhaseStatus:
        return PhaseStatus(
            phase_id=phase.phase_id,
            ordinal=phase.ordinal,
            name=phase.definition.name,
            state=phase.state,
            progress=phase.progress,
            sub_tasks_total=len(phase.sub_tasks),
            sub_tasks_completed=len(phase.in_state(SubTaskState.COMPLETED)),
            sub_tasks_in_flight=len(phase.in_state(SubTaskState.STARTED)),
            started_at=phase.started_at,
            completed_at=phase.completed_at,
        )

    # ------------------------------------------------------------------
    # Dispatch and retry scheduling
    # ------------------------------------------------------------------

    def _assignment(self, phase: Phase, task: SubTask) -> SubTaskAssignment:
        return SubTaskAssignment(
            run_id=self.run_id,
            phase_id=phase.phase_id,
            sub_task_id=task.sub_task_id,
            attempt=task.attempt,
            cancellation=task.cancellation,
        )

    def _dispatch(self, assignments: list[SubTaskAssignment]) -> None:
        if self._dispatcher is None:
            return
        for assignment in assignments:
            self._spawn(self._invoke_dispatcher(assignment))

    async def _invoke_dispatcher(self, assignment: SubTaskAssignment) -> None:
        assert self._dispatcher is not None
        try:
            result = self._dispatcher(assignment)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # The sub-task stays Started; the stall rule surfaces it
            logger.error(
                "Dispatcher failed for sub-task %s/%s: %s",
                assignment.phase_id.value,
                assignment.sub_task_id,
                e,
                exc_info=True,
                extra={"run_id": str(self.run_id), "phase_id": assignment.phase_id.value},
            )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _schedule_retry(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        due = loop.time() + max(0.0, delay)
        if self._retry_timer is not None and self._retry_timer.when() <= due:
            return
        self._cancel_retry_timer()
        self._retry_timer = loop.call_at(due, self._on_retry_timer)

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _on_retry_timer(self) -> None:
        self._retry_timer = None
        self._spawn(self._start_due_retries())

    async def _start_due_retries(self) -> None:
        async with self._lock:
            if self._run.state != RunState.RUNNING:
                return
            assignments = self._fill_slots(self._run.current_phase, self._clock())
        self._dispatch(assignments)


__all__ = [
    "RunOrchestrator",
    "SubTaskAssignment",
    "SubTaskDispatcher",
    "Clock",
    "utcnow",
]
