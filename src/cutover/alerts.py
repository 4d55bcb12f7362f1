"""
Alert evaluation over the emitter stream.

The AlertEvaluator subscribes to the MetricEmitter and never calls the
orchestrator, so alerting failures cannot block migration progress.

Two kinds of rules are supported:

- Immediate rules fire for every matching datum whose value breaches the
  threshold (the phase-failure rule).
- Windowed rules are evaluated once per closed period over the last
  ``evaluation_periods`` periods. They fire on the OK -> ALARM transition
  only and re-arm when an evaluation comes back OK. Increase-based
  windowed rules (the stall rule) compare the window statistic with the
  value of the previous evaluation instead of an absolute threshold.

Each firing records an Alert, publishes one AlertCreated event and hands
one AlertNotification to the notification channel. Delivery errors are
logged and counted, never retried.

Example:
    >>> channel = InMemoryNotificationChannel()
    >>> evaluator = AlertEvaluator(emitter=emitter, channel=channel)
    >>> emitter.subscribe(evaluator.handle)
    >>> await evaluator.start(interval_seconds=60)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import operator
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Final, Protocol, runtime_checkable
from uuid import UUID, uuid4

from cutover.emitter import MetricEmitter, StreamItem
from cutover.events import (
    AlertCreated,
    MigrationCompleted,
    MigrationEvent,
    MigrationFailed,
    PhaseFailed,
    PhaseStarted,
)
from cutover.metrics import (
    ALERT_CREATED,
    DIMENSION_PHASE_ID,
    ERROR_RATE,
    PHASE_PROGRESS,
    MetricDatum,
    align_timestamp,
)
from cutover.models import AlertSeverity
from cutover.observability import (
    ATTR_ALERT_COUNT,
    ATTR_ALERT_SEVERITY,
    ATTR_RULE_NAME,
    ATTR_RUN_ID,
    Tracer,
    create_tracer,
)
from cutover.registry import PhaseId

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE: Final = 100


class ComparisonOperator(Enum):
    GREATER_THAN_OR_EQUAL_TO_THRESHOLD = "GreaterThanOrEqualToThreshold"
    GREATER_THAN_THRESHOLD = "GreaterThanThreshold"
    LESS_THAN_THRESHOLD = "LessThanThreshold"
    LESS_THAN_OR_EQUAL_TO_THRESHOLD = "LessThanOrEqualToThreshold"

    def compare(self, value: float, threshold: float) -> bool:
        return _COMPARATORS[self](value, threshold)

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]


_COMPARATORS: Final[dict[ComparisonOperator, Callable[[float, float], bool]]] = {
    ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD: operator.ge,
    ComparisonOperator.GREATER_THAN_THRESHOLD: operator.gt,
    ComparisonOperator.LESS_THAN_THRESHOLD: operator.lt,
    ComparisonOperator.LESS_THAN_OR_EQUAL_TO_THRESHOLD: operator.le,
}

_SYMBOLS: Final[dict[ComparisonOperator, str]] = {
    ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD: ">=",
    ComparisonOperator.GREATER_THAN_THRESHOLD: ">",
    ComparisonOperator.LESS_THAN_THRESHOLD: "<",
    ComparisonOperator.LESS_THAN_OR_EQUAL_TO_THRESHOLD: "<=",
}


class Statistic(Enum):
    SUM = "Sum"
    AVERAGE = "Average"
    MAXIMUM = "Maximum"
    MINIMUM = "Minimum"
    SAMPLE_COUNT = "SampleCount"

    def apply(self, values: Sequence[float]) -> float:
        if self is Statistic.SUM:
            return float(sum(values))
        if self is Statistic.AVERAGE:
            return sum(values) / len(values)
        if self is Statistic.MAXIMUM:
            return float(max(values))
        if self is Statistic.MINIMUM:
            return float(min(values))
        return float(len(values))


class MissingDataTreatment(Enum):
    BREACHING = "breaching"
    NOT_BREACHING = "notBreaching"


@dataclass(frozen=True)
class AlertRule:
    """
    A named threshold evaluated against one metric.

    Attributes:
        name: Rule name carried by AlertCreated.
        metric_name: Metric the rule watches.
        statistic: Aggregation applied to the samples of a period.
        comparison: How the statistic is compared with the threshold.
        threshold: Threshold value (an increase for increase-based rules).
        severity: Severity of the alerts the rule raises.
        period_seconds: Width of one evaluation period.
        evaluation_periods: Consecutive periods that must all breach.
        missing_data: Whether a period without samples breaches.
        dimension: Dimension the rule is keyed by (e.g. PhaseId). Only the
            run's active phase is evaluated for PhaseId-keyed rules.
        immediate: Fire on every breaching datum instead of per period.
        increase_based: Compare the increase of the window statistic over
            the previous evaluation against the threshold.
        description: Human-readable purpose.
    """

    name: str
    metric_name: str
    statistic: Statistic
    comparison: ComparisonOperator
    threshold: float
    severity: AlertSeverity
    period_seconds: int = 300
    evaluation_periods: int = 1
    missing_data: MissingDataTreatment = MissingDataTreatment.NOT_BREACHING
    dimension: str | None = None
    immediate: bool = False
    increase_based: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must not be empty")
        if self.metric_name == ALERT_CREATED:
            raise ValueError("rules cannot watch the AlertCreated metric")
        if self.period_seconds < 1:
            raise ValueError(f"period_seconds must be >= 1, got {self.period_seconds}")
        if self.evaluation_periods < 1:
            raise ValueError(f"evaluation_periods must be >= 1, got {self.evaluation_periods}")
        if self.immediate and self.increase_based:
            raise ValueError("a rule cannot be both immediate and increase-based")

    @property
    def window_seconds(self) -> int:
        return self.period_seconds * self.evaluation_periods


PHASE_FAILURE_RULE: Final = AlertRule(
    name="migration-phase-failure",
    metric_name=PhaseFailed.__name__,
    statistic=Statistic.SUM,
    comparison=ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD,
    threshold=1,
    severity=AlertSeverity.CRITICAL,
    period_seconds=300,
    immediate=True,
    description="A migration phase has failed",
)

HIGH_ERROR_RATE_RULE: Final = AlertRule(
    name="migration-high-error-rate",
    metric_name=ERROR_RATE,
    statistic=Statistic.AVERAGE,
    comparison=ComparisonOperator.GREATER_THAN_THRESHOLD,
    threshold=10,
    severity=AlertSeverity.ERROR,
    period_seconds=300,
    evaluation_periods=2,
    missing_data=MissingDataTreatment.NOT_BREACHING,
    description="Sub-task error rate is above 10%",
)

STALLED_PROGRESS_RULE: Final = AlertRule(
    name="migration-stalled-progress",
    metric_name=PHASE_PROGRESS,
    statistic=Statistic.MAXIMUM,
    comparison=ComparisonOperator.LESS_THAN_THRESHOLD,
    threshold=1,
    severity=AlertSeverity.WARNING,
    period_seconds=900,
    evaluation_periods=3,
    missing_data=MissingDataTreatment.BREACHING,
    dimension=DIMENSION_PHASE_ID,
    increase_based=True,
    description="Phase progress has not increased",
)

DEFAULT_ALERT_RULES: Final[tuple[AlertRule, ...]] = (
    PHASE_FAILURE_RULE,
    HIGH_ERROR_RATE_RULE,
    STALLED_PROGRESS_RULE,
)


@dataclass
class Alert:
    """A recorded alert firing."""

    rule_name: str
    severity: AlertSeverity
    run_id: UUID
    message: str
    created_at: datetime
    alert_id: UUID = field(default_factory=uuid4)
    phase_id: PhaseId | None = None
    sub_task_id: str | None = None
    value: float | None = None
    acknowledged: bool = False
    acknowledged_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": str(self.alert_id),
            "rule_name": self.rule_name,
            "severity": self.severity.value,
            "run_id": str(self.run_id),
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "phase_id": self.phase_id.value if self.phase_id else None,
            "sub_task_id": self.sub_task_id,
            "value": self.value,
            "acknowledged": self.acknowledged,
        }


@dataclass(frozen=True)
class AlertNotification:
    """Payload handed to the notification channel for one alert."""

    alert: Alert

    @property
    def subject(self) -> str:
        return f"Migration Alert: {self.alert.severity.value.upper()}"

    def to_message(self) -> dict[str, Any]:
        """Render the relay payload."""
        alert = self.alert
        return {
            "migrationId": str(alert.run_id),
            "alert": {
                "type": alert.severity.value,
                "message": alert.message,
                "timestamp": alert.created_at.isoformat(),
                "phase": alert.phase_id.value if alert.phase_id else None,
                "subTask": alert.sub_task_id,
            },
        }


@runtime_checkable
class NotificationChannel(Protocol):
    """Transport that fans alerts out to operators."""

    async def deliver(self, notification: AlertNotification) -> None: ...


class InMemoryNotificationChannel:
    """Channel that keeps notifications in memory. Used in tests."""

    def __init__(self) -> None:
        self.notifications: list[AlertNotification] = []

    async def deliver(self, notification: AlertNotification) -> None:
        self.notifications.append(notification)

    def clear(self) -> None:
        self.notifications.clear()


_LOG_LEVELS: Final = {
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.ERROR: logging.ERROR,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


class LoggingNotificationChannel:
    """Channel that writes each notification to a logger at its severity."""

    def __init__(self, logger_name: str = "cutover.alerts.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    async def deliver(self, notification: AlertNotification) -> None:
        self._logger.log(
            _LOG_LEVELS[notification.alert.severity],
            "%s %s",
            notification.subject,
            json.dumps(notification.to_message()),
            extra={"run_id": str(notification.alert.run_id)},
        )


@dataclass
class _Series:
    """Samples and alarm state of one (rule, run, dimension value) series."""

    watch_start: datetime
    samples: deque[tuple[datetime, float]] = field(default_factory=deque)
    prior_value: float | None = None
    previous_statistic: float | None = None
    last_window_end: datetime | None = None
    in_alarm: bool = False


@dataclass
class _RunWatch:
    first_seen: datetime
    active_phase: PhaseId | None = None
    phase_started_at: datetime | None = None
    context: dict[str, MigrationEvent] = field(default_factory=dict)


class AlertEvaluator:
    """
    Consumes the emitter stream and raises alerts.

    Notifications are delivered in background tasks so a slow channel
    never holds up the emitter worker. Call flush() (or stop()) to wait
    for them.

    Args:
        rules: Rules to evaluate (the three default rules if None).
        emitter: Emitter to publish AlertCreated events to.
        channel: Notification channel (a LoggingNotificationChannel if None).
        clock: Source of the current time (UTC).
        history_size: Number of alerts kept for recent_alerts().
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
    """

    def __init__(
        self,
        rules: Sequence[AlertRule] | None = None,
        *,
        emitter: MetricEmitter | None = None,
        channel: NotificationChannel | None = None,
        clock: Callable[[], datetime] | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        rules = tuple(DEFAULT_ALERT_RULES if rules is None else rules)
        names = [r.name for r in rules]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate alert rule names: {names}")
        if history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._rules = rules
        self._emitter = emitter
        self._channel: NotificationChannel = channel or LoggingNotificationChannel()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._history: deque[Alert] = deque(maxlen=history_size)
        self._runs: dict[UUID, _RunWatch] = {}
        self._series: dict[tuple[str, UUID, str | None], _Series] = {}
        self._task: asyncio.Task[None] | None = None
        self._deliveries: set[asyncio.Task[None]] = set()
        self._stats = {
            "alerts_raised": 0,
            "evaluations": 0,
            "delivery_errors": 0,
        }

    @property
    def rules(self) -> tuple[AlertRule, ...]:
        return self._rules

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    @property
    def watched_runs(self) -> list[UUID]:
        return list(self._runs)

    # ------------------------------------------------------------------
    # Stream consumption
    # ------------------------------------------------------------------

    async def handle(self, item: StreamItem) -> None:
        """Emitter subscriber: record events and datums, fire immediate rules."""
        if isinstance(item, MetricDatum):
            await self._handle_datum(item)
        elif isinstance(item, MigrationEvent):
            self._handle_event(item)

    def _handle_event(self, event: MigrationEvent) -> None:
        if isinstance(event, AlertCreated):
            return
        if isinstance(event, (MigrationCompleted, MigrationFailed)):
            # Terminal runs are no longer evaluated
            self._forget_series(event.run_id)
            return

        watch = self._watch(event.run_id, event.occurred_at)
        watch.context[event.event_type] = event
        if isinstance(event, PhaseStarted):
            watch.active_phase = event.phase_id
            watch.phase_started_at = event.occurred_at
            self._forget_series(event.run_id, keep_phase=event.phase_id)

    async def _handle_datum(self, datum: MetricDatum) -> None:
        if datum.name == ALERT_CREATED:
            return
        for rule in self._rules:
            if rule.metric_name != datum.name:
                continue
            dim_value = datum.dimensions.get(rule.dimension) if rule.dimension else None
            if rule.dimension and dim_value is None:
                continue
            if rule.immediate:
                if rule.comparison.compare(datum.value, rule.threshold):
                    await self._fire_immediate(rule, datum)
                continue
            if datum.run_id not in self._runs:
                self._watch(datum.run_id, datum.timestamp)
            series = self._get_series(rule, datum.run_id, dim_value)
            series.samples.append((datum.timestamp, datum.value))

    def _watch(self, run_id: UUID, at: datetime) -> _RunWatch:
        watch = self._runs.get(run_id)
        if watch is None:
            watch = _RunWatch(first_seen=at)
            self._runs[run_id] = watch
            logger.debug("Watching run %s for alerts", run_id, extra={"run_id": str(run_id)})
        return watch

    def _get_series(self, rule: AlertRule, run_id: UUID, dim_value: str | None) -> _Series:
        key = (rule.name, run_id, dim_value)
        series = self._series.get(key)
        if series is None:
            watch = self._runs[run_id]
            start = watch.first_seen
            if rule.dimension == DIMENSION_PHASE_ID and watch.phase_started_at is not None:
                start = watch.phase_started_at
            series = _Series(watch_start=start)
            self._series[key] = series
        return series

    def _forget_series(self, run_id: UUID, keep_phase: PhaseId | None = None) -> None:
        """Drop series of a finished run, or of phases that are no longer active."""
        if keep_phase is None:
            self._runs.pop(run_id, None)
        for key in list(self._series):
            rule_name, key_run, dim_value = key
            if key_run != run_id:
                continue
            if keep_phase is None:
                del self._series[key]
            elif dim_value is not None and self._rule(rule_name).dimension == DIMENSION_PHASE_ID:
                if dim_value != keep_phase.value:
                    del self._series[key]

    def _rule(self, name: str) -> AlertRule:
        return next(r for r in self._rules if r.name == name)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(self, now: datetime | None = None) -> list[Alert]:
        """
        Evaluate windowed rules for every watched run.

        A series is evaluated at most once per closed period. Rules that
        treat missing data as breaching are only evaluated once the whole
        window lies after the series started being watched.

        Returns:
            Alerts raised by this evaluation.
        """
        now = now or self._clock()
        raised: list[Alert] = []
        with self._tracer.span("cutover.alerts.evaluate", {}) as span:
            self._stats["evaluations"] += 1
            for run_id, watch in list(self._runs.items()):
                for rule in self._rules:
                    if rule.immediate:
                        continue
                    dim_value: str | None = None
                    if rule.dimension == DIMENSION_PHASE_ID:
                        if watch.active_phase is None:
                            continue
                        dim_value = watch.active_phase.value
                    elif rule.dimension is not None:
                        continue
                    alert = await self._evaluate_series(rule, run_id, dim_value, now)
                    if alert is not None:
                        raised.append(alert)
            if span is not None:
                span.set_attribute(ATTR_ALERT_COUNT, len(raised))
        return raised

    async def _evaluate_series(
        self,
        rule: AlertRule,
        run_id: UUID,
        dim_value: str | None,
        now: datetime,
    ) -> Alert | None:
        series = self._get_series(rule, run_id, dim_value)
        period = timedelta(seconds=rule.period_seconds)
        window_end = align_timestamp(now, rule.period_seconds)
        window_start = window_end - period * rule.evaluation_periods

        if series.last_window_end is not None and window_end <= series.last_window_end:
            return None
        if rule.missing_data == MissingDataTreatment.BREACHING and series.watch_start > window_start:
            return None
        series.last_window_end = window_end

        while series.samples and series.samples[0][0] < window_start:
            series.prior_value = series.samples.popleft()[1]
        in_window = [(ts, v) for ts, v in series.samples if ts < window_end]

        if rule.increase_based:
            breaching, value = self._increase_breach(rule, series, in_window)
        else:
            breaching, value = self._period_breach(rule, in_window, window_start, period)

        if not breaching:
            if series.in_alarm:
                logger.info(
                    "Alert rule %s back to OK for run %s",
                    rule.name,
                    run_id,
                    extra={"run_id": str(run_id), "rule": rule.name},
                )
            series.in_alarm = False
            return None
        if series.in_alarm:
            return None
        series.in_alarm = True

        phase_id = PhaseId(dim_value) if rule.dimension == DIMENSION_PHASE_ID and dim_value else None
        message = _windowed_message(rule, value, phase_id)
        return await self._fire(rule, run_id, message, phase_id=phase_id, value=value)

    def _period_breach(
        self,
        rule: AlertRule,
        samples: list[tuple[datetime, float]],
        window_start: datetime,
        period: timedelta,
    ) -> tuple[bool, float | None]:
        """All evaluation periods must breach; returns the latest period statistic."""
        latest: float | None = None
        for i in range(rule.evaluation_periods):
            start = window_start + period * i
            end = start + period
            values = [v for ts, v in samples if start <= ts < end]
            if not values:
                if rule.missing_data != MissingDataTreatment.BREACHING:
                    return False, latest
                continue
            latest = rule.statistic.apply(values)
            if not rule.comparison.compare(latest, rule.threshold):
                return False, latest
        return True, latest

    def _increase_breach(
        self,
        rule: AlertRule,
        series: _Series,
        samples: list[tuple[datetime, float]],
    ) -> tuple[bool, float | None]:
        """Compare the window statistic with the previous evaluation's."""
        if not samples:
            series.previous_statistic = None
            return rule.missing_data == MissingDataTreatment.BREACHING, None

        statistic = rule.statistic.apply([v for _, v in samples])
        baseline = series.previous_statistic
        if baseline is None:
            baseline = series.prior_value if series.prior_value is not None else samples[0][1]
        series.previous_statistic = statistic
        increase = statistic - baseline
        return rule.comparison.compare(increase, rule.threshold), increase

    async def _fire_immediate(self, rule: AlertRule, datum: MetricDatum) -> Alert:
        watch = self._runs.get(datum.run_id)
        source = watch.context.get(datum.name) if watch else None
        phase_id = source.phase_id if source else None
        sub_task_id = source.sub_task_id if source else None
        reason = getattr(source, "reason", "") if source else ""

        if rule.metric_name == PhaseFailed.__name__:
            subject = phase_id.value if phase_id else "unknown"
            message = f"Phase {subject} failed"
            if reason:
                message = f"{message}: {reason}"
        else:
            message = (
                f"{rule.metric_name} {datum.value:g} {rule.comparison.symbol} {rule.threshold:g}"
            )
        return await self._fire(
            rule,
            datum.run_id,
            message,
            phase_id=phase_id,
            sub_task_id=sub_task_id,
            value=datum.value,
        )

    async def _fire(
        self,
        rule: AlertRule,
        run_id: UUID,
        message: str,
        *,
        phase_id: PhaseId | None = None,
        sub_task_id: str | None = None,
        value: float | None = None,
    ) -> Alert:
        alert = Alert(
            rule_name=rule.name,
            severity=rule.severity,
            run_id=run_id,
            message=message,
            created_at=self._clock(),
            phase_id=phase_id,
            sub_task_id=sub_task_id,
            value=value,
        )
        with self._tracer.span(
            "cutover.alerts.fire",
            {
                ATTR_RUN_ID: str(run_id),
                ATTR_RULE_NAME: rule.name,
                ATTR_ALERT_SEVERITY: rule.severity.value,
            },
        ):
            self._history.append(alert)
            self._stats["alerts_raised"] += 1
            logger.log(
                _LOG_LEVELS[rule.severity],
                "Alert %s (%s) for run %s: %s",
                rule.name,
                rule.severity.value,
                run_id,
                message,
                extra={
                    "run_id": str(run_id),
                    "rule": rule.name,
                    "phase_id": phase_id.value if phase_id else None,
                },
            )

            if self._emitter is not None:
                self._emitter.publish_event(
                    AlertCreated(
                        run_id=run_id,
                        phase_id=phase_id,
                        sub_task_id=sub_task_id,
                        alert_id=alert.alert_id,
                        severity=rule.severity,
                        rule_name=rule.name,
                        message=message,
                        occurred_at=alert.created_at,
                    )
                )

            self._spawn_delivery(AlertNotification(alert))
        return alert

    def _spawn_delivery(self, notification: AlertNotification) -> None:
        task = asyncio.create_task(self._deliver(notification))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, notification: AlertNotification) -> None:
        alert = notification.alert
        try:
            await self._channel.deliver(notification)
        except Exception as e:
            self._stats["delivery_errors"] += 1
            logger.error(
                "Failed to deliver alert %s for run %s: %s",
                alert.rule_name,
                alert.run_id,
                e,
                exc_info=True,
                extra={"run_id": str(alert.run_id), "rule": alert.rule_name},
            )

    async def flush(self) -> None:
        """Wait until every notification raised so far has been delivered."""
        while self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def recent_alerts(
        self,
        run_id: UUID | None = None,
        *,
        unacknowledged_only: bool = False,
        limit: int | None = None,
    ) -> list[Alert]:
        """Most recent alerts first."""
        alerts = [
            a
            for a in reversed(self._history)
            if (run_id is None or a.run_id == run_id)
            and not (unacknowledged_only and a.acknowledged)
        ]
        return alerts[:limit] if limit is not None else alerts

    def acknowledge(self, alert_id: UUID) -> bool:
        """Mark an alert as acknowledged; False if it is not in the history."""
        for alert in self._history:
            if alert.alert_id == alert_id:
                if not alert.acknowledged:
                    alert.acknowledged = True
                    alert.acknowledged_at = self._clock()
                return True
        return False

    # ------------------------------------------------------------------
    # Periodic evaluation
    # ------------------------------------------------------------------

    async def run(self, interval_seconds: float = 60.0) -> None:
        """Evaluate every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.evaluate()
            except Exception as e:
                logger.error("Alert evaluation failed: %s", e, exc_info=True)
            await asyncio.sleep(interval_seconds)

    async def start(self, interval_seconds: float = 60.0) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(
            self.run(interval_seconds), name="cutover-alert-evaluator"
        )

    async def stop(self) -> None:
        """Stop periodic evaluation and wait for pending notifications."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.flush()


def _windowed_message(rule: AlertRule, value: float | None, phase_id: PhaseId | None) -> str:
    scope = f" for phase {phase_id.value}" if phase_id else ""
    if value is None:
        return f"No {rule.metric_name} data{scope} in the last {rule.window_seconds}s"
    if rule.increase_based:
        return (
            f"{rule.metric_name}{scope} increased by {value:g} over {rule.window_seconds}s "
            f"(expected at least {rule.threshold:g})"
        )
    return (
        f"{rule.statistic.value} {rule.metric_name}{scope} {value:g} "
        f"{rule.comparison.symbol} {rule.threshold:g} for {rule.evaluation_periods} "
        f"consecutive {rule.period_seconds}s periods"
    )


__all__ = [
    "ComparisonOperator",
    "Statistic",
    "MissingDataTreatment",
    "AlertRule",
    "PHASE_FAILURE_RULE",
    "HIGH_ERROR_RATE_RULE",
    "STALLED_PROGRESS_RULE",
    "DEFAULT_ALERT_RULES",
    "Alert",
    "AlertNotification",
    "NotificationChannel",
    "InMemoryNotificationChannel",
    "LoggingNotificationChannel",
    "AlertEvaluator",
]
