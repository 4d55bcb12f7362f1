"""
Observability utilities for cutover.

Components receive a Tracer by composition:

    >>> from cutover.observability import create_tracer
    >>>
    >>> class MyComponent:
    ...     def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
"""

from cutover.observability.attributes import (
    ATTR_ALERT_COUNT,
    ATTR_ALERT_SEVERITY,
    ATTR_ATTEMPT,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_TYPE,
    ATTR_OUTCOME,
    ATTR_PHASE_ID,
    ATTR_RULE_NAME,
    ATTR_RUN_ID,
    ATTR_RUN_STATE,
    ATTR_SUB_TASK_ID,
)
from cutover.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanRecord,
    Tracer,
    create_tracer,
)

__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "SpanRecord",
    "MockTracer",
    "create_tracer",
    "ATTR_ALERT_COUNT",
    "ATTR_ALERT_SEVERITY",
    "ATTR_ATTEMPT",
    "ATTR_EVENT_COUNT",
    "ATTR_EVENT_TYPE",
    "ATTR_OUTCOME",
    "ATTR_PHASE_ID",
    "ATTR_RULE_NAME",
    "ATTR_RUN_ID",
    "ATTR_RUN_STATE",
    "ATTR_SUB_TASK_ID",
]
