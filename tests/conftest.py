"""
Shared pytest fixtures for the cutover tests.

This module provides:
- A controllable UTC clock (clock)
- Registry and configuration fixtures (registry, small_registry, config)
- Stream fixtures (metric_sink, emitter)
- Orchestrator fixtures (orchestrator, make_orchestrator, drive_phase)
- Alerting fixtures (channel, evaluator)
- OpenTelemetry metrics fixtures (metric_reader, meter_provider)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from cutover.alerts import AlertEvaluator, InMemoryNotificationChannel
from cutover.emitter import MetricEmitter
from cutover.metrics import InMemoryMetricSink
from cutover.models import OrchestratorConfig, Outcome, SubTaskState
from cutover.orchestrator import RunOrchestrator
from cutover.registry import PhaseId, PhaseRegistry

# ============================================================================
# Clock
# ============================================================================

START_TIME = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def run_id() -> UUID:
    return uuid4()


# ============================================================================
# Registry and Configuration
# ============================================================================


@pytest.fixture
def registry() -> PhaseRegistry:
    return PhaseRegistry.default()


@pytest.fixture
def small_registry() -> PhaseRegistry:
    """Three equally weighted sub-tasks in every phase."""
    return PhaseRegistry.from_sub_task_ids({phase: ["a", "b", "c"] for phase in PhaseId})


@pytest.fixture
def config() -> OrchestratorConfig:
    """Immediate retries so tests never wait on backoff timers."""
    return OrchestratorConfig(max_concurrent_sub_tasks=3, max_retries=3, retry_initial_delay=0)


# ============================================================================
# Stream
# ============================================================================


@pytest.fixture
def metric_sink() -> InMemoryMetricSink:
    return InMemoryMetricSink()


@pytest_asyncio.fixture
async def emitter(metric_sink: InMemoryMetricSink) -> AsyncGenerator[MetricEmitter, None]:
    emitter = MetricEmitter(sinks=[metric_sink], enable_tracing=False)
    yield emitter
    await emitter.stop()


@pytest.fixture
def events(emitter: MetricEmitter) -> list[Any]:
    """Every item delivered on the emitter stream, in order."""
    received: list[Any] = []
    emitter.subscribe(received.append)
    return received


# ============================================================================
# Orchestrator
# ============================================================================


@pytest.fixture
def make_orchestrator(
    small_registry: PhaseRegistry,
    emitter: MetricEmitter,
    config: OrchestratorConfig,
    clock: FakeClock,
    run_id: UUID,
) -> Callable[..., RunOrchestrator]:
    """Factory for orchestrators sharing the test emitter and clock."""

    def factory(**overrides: Any) -> RunOrchestrator:
        kwargs: dict[str, Any] = {
            "config": config,
            "run_id": run_id,
            "clock": clock,
            "enable_tracing": False,
        }
        kwargs.update(overrides)
        registry = kwargs.pop("registry", small_registry)
        return RunOrchestrator(registry, emitter, **kwargs)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator: Callable[..., RunOrchestrator]) -> RunOrchestrator:
    return make_orchestrator()


@pytest.fixture
def drive_phase() -> Callable[..., Awaitable[None]]:
    """Report SUCCESS for every sub-task of a phase, starting them as slots free up."""

    async def drive(
        orchestrator: RunOrchestrator,
        phase_id: PhaseId,
        bytes_processed: int | None = None,
    ) -> None:
        phase = orchestrator.phase(phase_id)
        while any(t.state == SubTaskState.STARTED for t in phase.sub_tasks.values()):
            task = phase.in_state(SubTaskState.STARTED)[0]
            await orchestrator.report_sub_task_outcome(
                phase_id,
                task.sub_task_id,
                Outcome.SUCCESS,
                bytes_processed=bytes_processed,
            )

    return drive


# ============================================================================
# Alerting
# ============================================================================


@pytest.fixture
def channel() -> InMemoryNotificationChannel:
    return InMemoryNotificationChannel()


@pytest.fixture
def evaluator(
    emitter: MetricEmitter,
    channel: InMemoryNotificationChannel,
    clock: FakeClock,
) -> AlertEvaluator:
    return AlertEvaluator(emitter=emitter, channel=channel, clock=clock, enable_tracing=False)


# ============================================================================
# OpenTelemetry Metrics Fixtures
# ============================================================================


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def meter_provider(metric_reader: InMemoryMetricReader) -> MeterProvider:
    """A meter provider local to the test; the global provider is left alone."""
    return MeterProvider(metric_readers=[metric_reader])
