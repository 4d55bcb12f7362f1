"""
cutover - Migration orchestration and progress tracking engine.

This library provides:
- A ten-phase run state machine with sub-task concurrency, retries and
  pause/resume/abort controls
- Weighted progress aggregation, throughput and error-rate tracking
- An asynchronous, best-effort event and metric stream
  (DirectFanz/Migration namespace) with in-memory and OpenTelemetry sinks
- Alert evaluation for phase failures, high error rates and stalled
  progress, with pluggable notification channels
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cutover")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Alerting
from cutover.alerts import (
    DEFAULT_ALERT_RULES,
    Alert,
    AlertEvaluator,
    AlertNotification,
    AlertRule,
    ComparisonOperator,
    InMemoryNotificationChannel,
    LoggingNotificationChannel,
    MissingDataTreatment,
    NotificationChannel,
    Statistic,
)

# Operator surface
from cutover.coordinator import MigrationCoordinator

# Stream
from cutover.emitter import MetricEmitter, StreamHandler, StreamItem

# Events
from cutover.events import (
    AlertCreated,
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

# Exceptions
from cutover.exceptions import (
    ConfigurationError,
    CutoverError,
    InvalidTransitionError,
    PhaseFailure,
    RunAlreadyExistsError,
    RunNotFoundError,
    SubTaskExecutionFailure,
)

# Metrics
from cutover.metrics import (
    NAMESPACE,
    InMemoryMetricSink,
    MetricDatum,
    MetricSink,
    MetricUnit,
    OpenTelemetryMetricSink,
)

# Models
from cutover.models import (
    AlertSeverity,
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

# Orchestration
from cutover.orchestrator import RunOrchestrator, SubTaskAssignment, SubTaskDispatcher
from cutover.progress import ProgressAggregator, overall_progress, phase_progress

# Registry
from cutover.registry import (
    END_OF_RUN,
    PhaseDefinition,
    PhaseId,
    PhaseRegistry,
    SubTaskDefinition,
)

__all__ = [
    "__version__",
    # Alerting
    "DEFAULT_ALERT_RULES",
    "Alert",
    "AlertEvaluator",
    "AlertNotification",
    "AlertRule",
    "ComparisonOperator",
    "InMemoryNotificationChannel",
    "LoggingNotificationChannel",
    "MissingDataTreatment",
    "NotificationChannel",
    "Statistic",
    # Operator surface
    "MigrationCoordinator",
    # Stream
    "MetricEmitter",
    "StreamHandler",
    "StreamItem",
    # Events
    "AlertCreated",
    "MigrationCompleted",
    "MigrationEvent",
    "MigrationFailed",
    "MigrationInitialized",
    "MigrationPaused",
    "MigrationResumed",
    "PhaseCompleted",
    "PhaseFailed",
    "PhaseStarted",
    "SubTaskCompleted",
    "SubTaskFailed",
    "SubTaskStarted",
    # Exceptions
    "ConfigurationError",
    "CutoverError",
    "InvalidTransitionError",
    "PhaseFailure",
    "RunAlreadyExistsError",
    "RunNotFoundError",
    "SubTaskExecutionFailure",
    # Metrics
    "NAMESPACE",
    "InMemoryMetricSink",
    "MetricDatum",
    "MetricSink",
    "MetricUnit",
    "OpenTelemetryMetricSink",
    # Models
    "AlertSeverity",
    "MigrationRun",
    "OrchestratorConfig",
    "Outcome",
    "Phase",
    "PhaseState",
    "PhaseStatus",
    "PhaseTimelineEntry",
    "RunState",
    "RunStatus",
    "SubTask",
    "SubTaskState",
    # Orchestration
    "RunOrchestrator",
    "SubTaskAssignment",
    "SubTaskDispatcher",
    "ProgressAggregator",
    "overall_progress",
    "phase_progress",
    # Registry
    "END_OF_RUN",
    "PhaseDefinition",
    "PhaseId",
    "PhaseRegistry",
    "SubTaskDefinition",
]
