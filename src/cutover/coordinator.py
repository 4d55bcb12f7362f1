"""
MigrationCoordinator - operator and executor surface over many runs.

The coordinator owns one RunOrchestrator per run id and routes operator
controls and executor reports to it. All orchestrators share the
coordinator's registry, configuration, emitter and dispatcher.

Usage:
    >>> from cutover import MigrationCoordinator, MetricEmitter
    >>>
    >>> coordinator = MigrationCoordinator(emitter=MetricEmitter(), dispatcher=launch)
    >>> run_id = await coordinator.create_run()
    >>> await coordinator.start(run_id)
    >>>
    >>> # Executors report back
    >>> await coordinator.report_sub_task_outcome(
    ...     run_id, "infrastructure-setup", "network-provisioning", Outcome.SUCCESS
    ... )
    >>>
    >>> status = coordinator.status(run_id)
    >>> print(f"Phase: {status.current_phase}, Progress: {status.overall_progress}%")
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID, uuid4

from cutover.emitter import MetricEmitter
from cutover.exceptions import RunAlreadyExistsError, RunNotFoundError
from cutover.models import OrchestratorConfig, Outcome, PhaseTimelineEntry, RunStatus
from cutover.observability import Tracer, create_tracer
from cutover.orchestrator import Clock, RunOrchestrator, SubTaskDispatcher
from cutover.registry import PhaseId, PhaseRegistry

logger = logging.getLogger(__name__)


class MigrationCoordinator:
    """
    Entry point for creating and controlling migration runs.

    Args:
        registry: Phase table shared by all runs (default table if None).
        config: Orchestrator settings shared by all runs.
        emitter: Shared event and metric stream (a new one if None).
        dispatcher: Optional callback for every started sub-task.
        clock: Source of the current time (UTC).
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
    """

    def __init__(
        self,
        registry: PhaseRegistry | None = None,
        config: OrchestratorConfig | None = None,
        *,
        emitter: MetricEmitter | None = None,
        dispatcher: SubTaskDispatcher | None = None,
        clock: Clock | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._registry = registry or PhaseRegistry.default()
        self._config = config or OrchestratorConfig()
        self._emitter = emitter or MetricEmitter(
            period_seconds=self._config.metric_period_seconds,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._dispatcher = dispatcher
        self._clock = clock
        self._runs: dict[UUID, RunOrchestrator] = {}

    @property
    def registry(self) -> PhaseRegistry:
        return self._registry

    @property
    def emitter(self) -> MetricEmitter:
        return self._emitter

    async def create_run(self, run_id: UUID | None = None) -> UUID:
        """
        Initialize a new run (emits MigrationInitialized).

        Raises:
            RunAlreadyExistsError: If run_id is already registered.
        """
        run_id = run_id or uuid4()
        if run_id in self._runs:
            raise RunAlreadyExistsError(run_id)
        self._runs[run_id] = RunOrchestrator(
            self._registry,
            self._emitter,
            self._config,
            run_id=run_id,
            dispatcher=self._dispatcher,
            clock=self._clock,
            tracer=self._tracer,
        )
        return run_id

    def get_run(self, run_id: UUID) -> RunOrchestrator:
        """
        Raises:
            RunNotFoundError: If the run does not exist.
        """
        try:
            return self._runs[run_id]
        except KeyError:
            raise RunNotFoundError(run_id) from None

    async def start(self, run_id: UUID) -> None:
        await self.get_run(run_id).start()

    async def pause(self, run_id: UUID) -> bool:
        return await self.get_run(run_id).pause()

    async def resume(self, run_id: UUID) -> bool:
        return await self.get_run(run_id).resume()

    async def abort(self, run_id: UUID, reason: str = "aborted by operator") -> None:
        orchestrator = self.get_run(run_id)
        logger.warning(
            "Aborting migration run %s: %s",
            run_id,
            reason,
            extra={"run_id": str(run_id)},
        )
        await orchestrator.abort(reason)

    async def report_sub_task_outcome(
        self,
        run_id: UUID,
        phase_id: PhaseId | str,
        sub_task_id: str,
        outcome: Outcome | str,
        *,
        bytes_processed: int | None = None,
        error_detail: str | None = None,
    ) -> bool:
        """Route an executor report to its run. See RunOrchestrator.report_sub_task_outcome."""
        return await self.get_run(run_id).report_sub_task_outcome(
            phase_id,
            sub_task_id,
            outcome,
            bytes_processed=bytes_processed,
            error_detail=error_detail,
        )

    def status(self, run_id: UUID) -> RunStatus:
        return self.get_run(run_id).status()

    def list_runs(self, *, active_only: bool = False) -> list[RunStatus]:
        """Status of every run, in creation order."""
        statuses = [o.status() for o in self._runs.values()]
        if active_only:
            return [s for s in statuses if not s.is_terminal]
        return statuses

    def estimate_completion(self, run_id: UUID) -> datetime | None:
        return self.get_run(run_id).estimate_completion()

    def timeline(self, run_id: UUID) -> list[PhaseTimelineEntry]:
        return self.get_run(run_id).timeline()

    async def close(self) -> None:
        """Close all orchestrators and flush the emitter."""
        for orchestrator in self._runs.values():
            await orchestrator.close()
        await self._emitter.stop()


__all__ = ["MigrationCoordinator"]
