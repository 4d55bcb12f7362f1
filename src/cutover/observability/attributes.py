"""
Standard span attribute names for cutover components.

Using these constants keeps span attributes consistent across the
orchestrator, the emitter and the alert evaluator.

Example:
    >>> from cutover.observability.attributes import ATTR_RUN_ID, ATTR_PHASE_ID
    >>> with tracer.span("cutover.orchestrator.start", {ATTR_RUN_ID: str(run_id)}):
    ...     pass
"""

ATTR_RUN_ID = "cutover.run.id"
"""Migration run identifier."""

ATTR_RUN_STATE = "cutover.run.state"
"""Run state after the operation."""

ATTR_PHASE_ID = "cutover.phase.id"
"""Phase identifier (one of the ten phase ids)."""

ATTR_SUB_TASK_ID = "cutover.sub_task.id"
"""Sub-task identifier within its phase."""

ATTR_OUTCOME = "cutover.sub_task.outcome"
"""Reported sub-task outcome."""

ATTR_ATTEMPT = "cutover.sub_task.attempt"
"""1-based sub-task attempt number."""

ATTR_EVENT_TYPE = "cutover.event.type"
"""Event class name."""

ATTR_EVENT_COUNT = "cutover.event.count"
"""Number of items in a batch."""

ATTR_RULE_NAME = "cutover.alert.rule"
"""Alert rule name."""

ATTR_ALERT_SEVERITY = "cutover.alert.severity"
"""Alert severity."""

ATTR_ALERT_COUNT = "cutover.alert.count"
"""Number of alerts raised by an evaluation."""

__all__ = [
    "ATTR_RUN_ID",
    "ATTR_RUN_STATE",
    "ATTR_PHASE_ID",
    "ATTR_SUB_TASK_ID",
    "ATTR_OUTCOME",
    "ATTR_ATTEMPT",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_RULE_NAME",
    "ATTR_ALERT_SEVERITY",
    "ATTR_ALERT_COUNT",
]
