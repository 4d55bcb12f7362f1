"""
Phase and sub-task registry for the AWS cutover.

The cutover always runs the same ten phases in the same order. PhaseId
is the closed set of phase identifiers; its declaration order is the
ordinal table. PhaseRegistry binds each phase to its declared sub-tasks
and is read-only once built.

Example:
    >>> registry = PhaseRegistry.default()
    >>> registry.phase_at(0)
    <PhaseId.INFRASTRUCTURE_SETUP: 'infrastructure-setup'>
    >>> registry.next_phase(PhaseId.FINAL_VALIDATION) is END_OF_RUN
    True
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Final

from cutover.exceptions import ConfigurationError


class PhaseId(Enum):
    """
    The ten cutover phases, in execution order.

    Ordinal position is the declaration order; a phase may only start
    once its predecessor has completed.
    """

    INFRASTRUCTURE_SETUP = "infrastructure-setup"
    DATABASE_MIGRATION = "database-migration"
    CACHING_LAYER = "caching-layer"
    CONTAINER_ORCHESTRATION = "container-orchestration"
    CONTENT_STORAGE = "content-storage"
    STREAMING_INFRASTRUCTURE = "streaming-infrastructure"
    APPLICATION_MIGRATION = "application-migration"
    SECURITY_IMPLEMENTATION = "security-implementation"
    MONITORING_OBSERVABILITY = "monitoring-observability"
    FINAL_VALIDATION = "final-validation"

    @property
    def ordinal(self) -> int:
        """Zero-based position of this phase in the cutover."""
        return _ORDINALS[self]

    @classmethod
    def parse(cls, value: PhaseId | str) -> PhaseId:
        """
        Resolve a phase id from its enum member or wire value.

        Raises:
            ConfigurationError: If the value is not one of the ten phases.
        """
        if isinstance(value, PhaseId):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown phase id: {value!r}") from None


_ORDINALS: Final[dict[PhaseId, int]] = {phase: i for i, phase in enumerate(PhaseId)}


class _EndOfRun:
    """Sentinel returned by next_phase() after the final phase."""

    _instance: _EndOfRun | None = None

    def __new__(cls) -> _EndOfRun:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_RUN"

    def __bool__(self) -> bool:
        return False


END_OF_RUN: Final = _EndOfRun()


@dataclass(frozen=True)
class SubTaskDefinition:
    """
    A declared unit of work within a phase.

    Attributes:
        sub_task_id: Identifier, unique within the phase.
        weight: Relative contribution to phase progress (default 1.0).
        name: Human-readable name.
    """

    sub_task_id: str
    weight: float = 1.0
    name: str = ""

    def __post_init__(self) -> None:
        if not self.sub_task_id:
            raise ConfigurationError("sub_task_id must be a non-empty string")
        if self.weight <= 0:
            raise ConfigurationError(
                f"Sub-task {self.sub_task_id!r} weight must be positive, got {self.weight}"
            )


@dataclass(frozen=True)
class PhaseDefinition:
    """
    Static definition of one phase.

    Attributes:
        phase_id: The phase identifier.
        name: Human-readable name.
        description: What the phase covers.
        sub_tasks: Declared sub-tasks, in start order.
        estimated_duration_minutes: Planning estimate used for completion projection.
    """

    phase_id: PhaseId
    name: str
    sub_tasks: tuple[SubTaskDefinition, ...]
    description: str = ""
    estimated_duration_minutes: float = 60.0

    @property
    def ordinal(self) -> int:
        return self.phase_id.ordinal

    @property
    def total_weight(self) -> float:
        return sum(task.weight for task in self.sub_tasks)


class PhaseRegistry:
    """
    Read-only table of the ten phases and their sub-tasks.

    The registry validates on construction that exactly the ten phases
    are present in ordinal order, that every phase declares at least one
    sub-task, and that sub-task ids are unique per phase.

    Raises:
        ConfigurationError: On any invalid table or unknown id lookup.
    """

    def __init__(self, definitions: Sequence[PhaseDefinition]) -> None:
        ordered = tuple(definitions)
        if tuple(d.phase_id for d in ordered) != tuple(PhaseId):
            raise ConfigurationError(
                "Phase table must list all ten phases in order: "
                + ", ".join(p.value for p in PhaseId)
            )

        self._definitions: tuple[PhaseDefinition, ...] = ordered
        self._by_phase: dict[PhaseId, PhaseDefinition] = {}
        self._sub_tasks: dict[PhaseId, dict[str, SubTaskDefinition]] = {}

        for definition in ordered:
            if not definition.sub_tasks:
                raise ConfigurationError(
                    f"Phase {definition.phase_id.value} declares no sub-tasks"
                )
            tasks: dict[str, SubTaskDefinition] = {}
            for task in definition.sub_tasks:
                if task.sub_task_id in tasks:
                    raise ConfigurationError(
                        f"Duplicate sub-task {task.sub_task_id!r} "
                        f"in phase {definition.phase_id.value}"
                    )
                tasks[task.sub_task_id] = task
            self._by_phase[definition.phase_id] = definition
            self._sub_tasks[definition.phase_id] = tasks

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[PhaseDefinition]:
        return iter(self._definitions)

    @property
    def phases(self) -> tuple[PhaseId, ...]:
        return tuple(d.phase_id for d in self._definitions)

    def phase_at(self, ordinal: int) -> PhaseId:
        """
        Get the phase at a zero-based ordinal.

        Raises:
            ConfigurationError: If the ordinal is out of range.
        """
        if not 0 <= ordinal < len(self._definitions):
            raise ConfigurationError(f"No phase at ordinal {ordinal}")
        return self._definitions[ordinal].phase_id

    def next_phase(self, current: PhaseId | str) -> PhaseId | _EndOfRun:
        """Get the phase after current, or END_OF_RUN after the last one."""
        phase = self.definition(current).phase_id
        nxt = phase.ordinal + 1
        if nxt >= len(self._definitions):
            return END_OF_RUN
        return self._definitions[nxt].phase_id

    def definition(self, phase: PhaseId | str) -> PhaseDefinition:
        phase_id = PhaseId.parse(phase)
        try:
            return self._by_phase[phase_id]
        except KeyError:
            raise ConfigurationError(f"Phase {phase_id.value} is not registered") from None

    def sub_tasks_of(self, phase: PhaseId | str) -> tuple[SubTaskDefinition, ...]:
        return self.definition(phase).sub_tasks

    def sub_task(self, phase: PhaseId | str, sub_task_id: str) -> SubTaskDefinition:
        """
        Look up a single sub-task definition.

        Raises:
            ConfigurationError: If the phase or the sub-task is not registered.
        """
        definition = self.definition(phase)
        try:
            return self._sub_tasks[definition.phase_id][sub_task_id]
        except KeyError:
            raise ConfigurationError(
                f"Sub-task {sub_task_id!r} is not registered in phase {definition.phase_id.value}"
            ) from None

    @classmethod
    def from_sub_task_ids(
        cls,
        sub_tasks: Mapping[PhaseId, Iterable[str | SubTaskDefinition]],
        *,
        estimated_durations: Mapping[PhaseId, float] | None = None,
    ) -> PhaseRegistry:
        """
        Build a registry from a mapping of phase to sub-task ids.

        Plain string ids get the default weight of 1.0.

        Example:
            >>> registry = PhaseRegistry.from_sub_task_ids(
            ...     {phase: ["run"] for phase in PhaseId}
            ... )
        """
        estimated_durations = estimated_durations or {}
        definitions = []
        for phase in PhaseId:
            if phase not in sub_tasks:
                raise ConfigurationError(f"Phase {phase.value} has no sub-task table")
            tasks = tuple(
                t if isinstance(t, SubTaskDefinition) else SubTaskDefinition(t)
                for t in sub_tasks[phase]
            )
            definitions.append(
                PhaseDefinition(
                    phase_id=phase,
                    name=phase.value.replace("-", " ").title(),
                    sub_tasks=tasks,
                    estimated_duration_minutes=estimated_durations.get(phase, 60.0),
                )
            )
        return cls(definitions)

    @classmethod
    def default(cls) -> PhaseRegistry:
        """The standard AWS cutover table."""
        return cls(_DEFAULT_PHASES)


def _tasks(*ids: str) -> tuple[SubTaskDefinition, ...]:
    return tuple(
        SubTaskDefinition(sub_task_id=i, name=i.replace("-", " ").capitalize()) for i in ids
    )


_DEFAULT_PHASES: Final[tuple[PhaseDefinition, ...]] = (
    PhaseDefinition(
        PhaseId.INFRASTRUCTURE_SETUP,
        "Infrastructure Setup",
        _tasks("network-provisioning", "compute-cluster", "load-balancers"),
        "VPC, subnets, compute cluster and load balancers",
        60,
    ),
    PhaseDefinition(
        PhaseId.DATABASE_MIGRATION,
        "Database Migration",
        _tasks("schema-migration", "data-transfer", "data-validation"),
        "Schema export, bulk data copy and integrity validation",
        120,
    ),
    PhaseDefinition(
        PhaseId.CACHING_LAYER,
        "Caching Layer",
        _tasks("cache-cluster", "cache-warmup"),
        "Managed cache cluster and warm-up",
        30,
    ),
    PhaseDefinition(
        PhaseId.CONTAINER_ORCHESTRATION,
        "Container Orchestration",
        _tasks("image-build", "service-deployment", "autoscaling-policies"),
        "Image registry push, service deployment and scaling policies",
        90,
    ),
    PhaseDefinition(
        PhaseId.CONTENT_STORAGE,
        "Content Storage",
        _tasks("bucket-setup", "content-transfer", "cdn-distribution"),
        "Object storage buckets, content copy and CDN distribution",
        180,
    ),
    PhaseDefinition(
        PhaseId.STREAMING_INFRASTRUCTURE,
        "Streaming Infrastructure",
        _tasks("media-pipeline", "stream-endpoints"),
        "Live streaming pipeline and ingest endpoints",
        60,
    ),
    PhaseDefinition(
        PhaseId.APPLICATION_MIGRATION,
        "Application Migration",
        _tasks("service-cutover", "dns-switch", "smoke-tests"),
        "Application cutover, DNS switch and smoke tests",
        90,
    ),
    PhaseDefinition(
        PhaseId.SECURITY_IMPLEMENTATION,
        "Security Implementation",
        _tasks("iam-policies", "secrets-rotation", "waf-rules"),
        "Access policies, secret rotation and firewall rules",
        45,
    ),
    PhaseDefinition(
        PhaseId.MONITORING_OBSERVABILITY,
        "Monitoring & Observability",
        _tasks("dashboards", "alarms", "log-aggregation"),
        "Dashboards, alarms and log aggregation",
        30,
    ),
    PhaseDefinition(
        PhaseId.FINAL_VALIDATION,
        "Final Validation",
        _tasks("integration-tests", "performance-validation", "rollback-verification"),
        "End-to-end validation before decommissioning the old platform",
        60,
    ),
)


__all__ = [
    "PhaseId",
    "END_OF_RUN",
    "SubTaskDefinition",
    "PhaseDefinition",
    "PhaseRegistry",
]
