"""
Metric datums and metric sinks for the DirectFanz/Migration namespace.

Every event becomes a count datum named after the event type. The
orchestrator additionally publishes gauges for phase progress, data
volume, throughput and error rate. All timestamps are floor-aligned to
the metric period (300 seconds by default) so downstream periodic
evaluation buckets them consistently.

Metrics Exposed:
    - MigrationInitialized, PhaseStarted, PhaseCompleted, PhaseFailed,
      SubTaskStarted, SubTaskCompleted, SubTaskFailed, MigrationPaused,
      MigrationResumed, MigrationCompleted, MigrationFailed (Count)
    - AlertCreated (Count, dimension AlertType)
    - PhaseProgress (Percent, dimension PhaseId)
    - TotalDataMigrated (Bytes)
    - MigrationSpeed (Bytes/Second)
    - ErrorRate (Percent)

Example:
    >>> sink = InMemoryMetricSink()
    >>> emitter = MetricEmitter(sinks=[sink])
    >>> emitter.publish_metric(
    ...     MetricDatum.gauge(PHASE_PROGRESS, 40, run_id, PhaseId=PhaseId.CACHING_LAYER.value)
    ... )
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Final, Protocol, runtime_checkable
from uuid import UUID

from opentelemetry import metrics
from opentelemetry.metrics import CallbackOptions, Observation

from cutover.events import AlertCreated, MigrationEvent

NAMESPACE: Final = "DirectFanz/Migration"
DEFAULT_PERIOD_SECONDS: Final = 300

PHASE_PROGRESS: Final = "PhaseProgress"
TOTAL_DATA_MIGRATED: Final = "TotalDataMigrated"
MIGRATION_SPEED: Final = "MigrationSpeed"
ERROR_RATE: Final = "ErrorRate"
ALERT_CREATED: Final = "AlertCreated"

DIMENSION_PHASE_ID: Final = "PhaseId"
DIMENSION_ALERT_TYPE: Final = "AlertType"

# Attribute carrying the exact metric name on OpenTelemetry data points
ATTRIBUTE_METRIC_NAME: Final = "MetricName"

_CAMEL_BOUNDARY: Final = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class MetricUnit(Enum):
    COUNT = "Count"
    PERCENT = "Percent"
    BYTES = "Bytes"
    BYTES_PER_SECOND = "Bytes/Second"


GAUGE_UNITS: Final[dict[str, MetricUnit]] = {
    PHASE_PROGRESS: MetricUnit.PERCENT,
    TOTAL_DATA_MIGRATED: MetricUnit.BYTES,
    MIGRATION_SPEED: MetricUnit.BYTES_PER_SECOND,
    ERROR_RATE: MetricUnit.PERCENT,
}


def align_timestamp(ts: datetime, period_seconds: int = DEFAULT_PERIOD_SECONDS) -> datetime:
    """
    Floor a timestamp to the start of its metric period.

    Naive datetimes are taken to be UTC.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    epoch = int(ts.timestamp())
    return datetime.fromtimestamp(epoch - epoch % period_seconds, tz=UTC)


@dataclass(frozen=True)
class MetricDatum:
    """
    A single metric sample.

    Attributes:
        name: Metric name within the namespace.
        value: Sample value.
        unit: Unit of the value.
        timestamp: Sample time (aligned by the emitter).
        run_id: Run the sample belongs to.
        dimensions: Metric dimensions (PhaseId, AlertType).
    """

    name: str
    value: float
    unit: MetricUnit
    timestamp: datetime
    run_id: UUID
    dimensions: dict[str, str] = field(default_factory=dict)

    @classmethod
    def count(
        cls,
        name: str,
        run_id: UUID,
        timestamp: datetime | None = None,
        value: float = 1,
        **dimensions: str,
    ) -> MetricDatum:
        return cls(
            name=name,
            value=value,
            unit=MetricUnit.COUNT,
            timestamp=timestamp or datetime.now(UTC),
            run_id=run_id,
            dimensions=dimensions,
        )

    @classmethod
    def gauge(
        cls,
        name: str,
        value: float,
        run_id: UUID,
        timestamp: datetime | None = None,
        **dimensions: str,
    ) -> MetricDatum:
        return cls(
            name=name,
            value=value,
            unit=GAUGE_UNITS.get(name, MetricUnit.COUNT),
            timestamp=timestamp or datetime.now(UTC),
            run_id=run_id,
            dimensions=dimensions,
        )

    def aligned(self, period_seconds: int) -> MetricDatum:
        """Return a copy with the timestamp floored to the period."""
        return MetricDatum(
            name=self.name,
            value=self.value,
            unit=self.unit,
            timestamp=align_timestamp(self.timestamp, period_seconds),
            run_id=self.run_id,
            dimensions=dict(self.dimensions),
        )

    def to_dict(self) -> dict[str, Any]:
        """Render in the PutMetricData datum shape."""
        return {
            "MetricName": self.name,
            "Value": self.value,
            "Unit": self.unit.value,
            "Timestamp": self.timestamp.isoformat(),
            "Dimensions": [{"Name": k, "Value": v} for k, v in sorted(self.dimensions.items())],
        }


def event_to_datums(event: MigrationEvent) -> list[MetricDatum]:
    """
    Convert an event into its count metric.

    AlertCreated is dimensioned by severity; every other event is
    emitted without dimensions.
    """
    dimensions: dict[str, str] = {}
    if isinstance(event, AlertCreated):
        dimensions[DIMENSION_ALERT_TYPE] = event.severity.value
    return [
        MetricDatum.count(
            event.event_type,
            event.run_id,
            timestamp=event.occurred_at,
            **dimensions,
        )
    ]


@runtime_checkable
class MetricSink(Protocol):
    """
    Destination for metric datums.

    Sinks are called from the emitter's background worker; an exception
    raised here is logged by the emitter and the batch is dropped.
    """

    async def send(self, datums: list[MetricDatum]) -> None: ...


class InMemoryMetricSink:
    """
    Sink that keeps every datum in memory.

    Useful for tests and for local dashboards.
    """

    def __init__(self) -> None:
        self.datums: list[MetricDatum] = []

    async def send(self, datums: list[MetricDatum]) -> None:
        self.datums.extend(datums)

    def named(self, name: str) -> list[MetricDatum]:
        return [d for d in self.datums if d.name == name]

    def total(self, name: str) -> float:
        return sum(d.value for d in self.named(name))

    def clear(self) -> None:
        self.datums.clear()


class OpenTelemetryMetricSink:
    """
    Sink that records datums through the OpenTelemetry metrics API.

    Count metrics map to counters; gauge metrics map to observable
    gauges reporting the latest value per attribute set. Instrument names
    are the snake_case form of the metric name (``SubTaskStarted`` is
    exported as ``sub_task_started``) because the SDK does not preserve
    case. The exact metric name travels in the ``MetricName`` attribute,
    next to the run id and the datum's dimensions.

    Args:
        meter_provider: Provider to obtain the meter from (global provider if None).
    """

    def __init__(self, meter_provider: metrics.MeterProvider | None = None) -> None:
        self._meter = metrics.get_meter(NAMESPACE, version="1.0.0", meter_provider=meter_provider)
        self._counters: dict[str, Any] = {}
        self._gauge_values: dict[str, dict[tuple[tuple[str, str], ...], float]] = defaultdict(
            dict
        )
        for name, unit in GAUGE_UNITS.items():
            self._meter.create_observable_gauge(
                name=instrument_name(name),
                callbacks=[self._gauge_callback(name)],
                unit=unit.value,
                description=f"Latest {name} value per run",
            )

    def _gauge_callback(self, name: str) -> Callable[[CallbackOptions], Iterator[Observation]]:
        def observe(options: CallbackOptions) -> Iterator[Observation]:
            for key, value in list(self._gauge_values[name].items()):
                yield Observation(value=value, attributes=dict(key))

        return observe

    def _counter(self, name: str) -> Any:
        counter = self._counters.get(name)
        if counter is None:
            counter = self._meter.create_counter(
                name=instrument_name(name),
                unit=MetricUnit.COUNT.value,
                description=f"Number of {name} occurrences",
            )
            self._counters[name] = counter
        return counter

    async def send(self, datums: list[MetricDatum]) -> None:
        for datum in datums:
            attributes = {
                ATTRIBUTE_METRIC_NAME: datum.name,
                "run_id": str(datum.run_id),
                **datum.dimensions,
            }
            if datum.name in GAUGE_UNITS:
                key = tuple(sorted(attributes.items()))
                self._gauge_values[datum.name][key] = datum.value
            else:
                self._counter(datum.name).add(datum.value, attributes)


def instrument_name(metric_name: str) -> str:
    """OpenTelemetry instrument name for a metric: ``PhaseProgress`` -> ``phase_progress``."""
    return _CAMEL_BOUNDARY.sub("_", metric_name).lower()


__all__ = [
    "NAMESPACE",
    "DEFAULT_PERIOD_SECONDS",
    "PHASE_PROGRESS",
    "TOTAL_DATA_MIGRATED",
    "MIGRATION_SPEED",
    "ERROR_RATE",
    "ALERT_CREATED",
    "DIMENSION_PHASE_ID",
    "DIMENSION_ALERT_TYPE",
    "MetricUnit",
    "MetricDatum",
    "MetricSink",
    "InMemoryMetricSink",
    "OpenTelemetryMetricSink",
    "align_timestamp",
    "event_to_datums",
    "instrument_name",
    "ATTRIBUTE_METRIC_NAME",
]
