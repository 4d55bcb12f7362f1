"""
Unit tests for the phase and sub-task registry.
"""

import pytest

from cutover.exceptions import ConfigurationError
from cutover.registry import (
    END_OF_RUN,
    PhaseDefinition,
    PhaseId,
    PhaseRegistry,
    SubTaskDefinition,
)


class TestPhaseId:
    """Tests for the PhaseId enum."""

    def test_ten_phases_in_order(self) -> None:
        assert [p.value for p in PhaseId] == [
            "infrastructure-setup",
            "database-migration",
            "caching-layer",
            "container-orchestration",
            "content-storage",
            "streaming-infrastructure",
            "application-migration",
            "security-implementation",
            "monitoring-observability",
            "final-validation",
        ]

    def test_ordinals(self) -> None:
        assert PhaseId.INFRASTRUCTURE_SETUP.ordinal == 0
        assert PhaseId.CONTENT_STORAGE.ordinal == 4
        assert PhaseId.FINAL_VALIDATION.ordinal == 9

    def test_parse_accepts_wire_value(self) -> None:
        assert PhaseId.parse("caching-layer") is PhaseId.CACHING_LAYER
        assert PhaseId.parse(PhaseId.CACHING_LAYER) is PhaseId.CACHING_LAYER

    def test_parse_unknown_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown phase id"):
            PhaseId.parse("data-center-exit")


class TestSubTaskDefinition:
    """Tests for SubTaskDefinition validation."""

    def test_defaults(self) -> None:
        task = SubTaskDefinition("schema-migration")
        assert task.weight == 1.0

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            SubTaskDefinition("")

    @pytest.mark.parametrize("weight", [0, -1.5])
    def test_non_positive_weight_rejected(self, weight: float) -> None:
        with pytest.raises(ConfigurationError, match="weight must be positive"):
            SubTaskDefinition("x", weight=weight)


class TestPhaseRegistry:
    """Tests for PhaseRegistry construction and lookups."""

    def test_default_table(self, registry: PhaseRegistry) -> None:
        assert len(registry) == 10
        assert registry.phases == tuple(PhaseId)
        for definition in registry:
            assert definition.sub_tasks
            assert definition.estimated_duration_minutes > 0

    def test_phase_at(self, registry: PhaseRegistry) -> None:
        assert registry.phase_at(0) is PhaseId.INFRASTRUCTURE_SETUP
        assert registry.phase_at(9) is PhaseId.FINAL_VALIDATION

    def test_phase_at_out_of_range(self, registry: PhaseRegistry) -> None:
        with pytest.raises(ConfigurationError):
            registry.phase_at(10)

    def test_next_phase(self, registry: PhaseRegistry) -> None:
        assert registry.next_phase(PhaseId.INFRASTRUCTURE_SETUP) is PhaseId.DATABASE_MIGRATION
        assert registry.next_phase("monitoring-observability") is PhaseId.FINAL_VALIDATION

    def test_next_phase_after_last_is_end_of_run(self, registry: PhaseRegistry) -> None:
        nxt = registry.next_phase(PhaseId.FINAL_VALIDATION)

        assert nxt is END_OF_RUN
        assert not nxt
        assert repr(nxt) == "END_OF_RUN"

    def test_sub_task_lookup(self, registry: PhaseRegistry) -> None:
        task = registry.sub_task(PhaseId.DATABASE_MIGRATION, "data-transfer")
        assert task.sub_task_id == "data-transfer"

    def test_unknown_sub_task_raises(self, registry: PhaseRegistry) -> None:
        with pytest.raises(ConfigurationError, match="not registered"):
            registry.sub_task(PhaseId.DATABASE_MIGRATION, "cache-warmup")

    def test_sub_tasks_of(self, small_registry: PhaseRegistry) -> None:
        ids = [t.sub_task_id for t in small_registry.sub_tasks_of(PhaseId.CACHING_LAYER)]
        assert ids == ["a", "b", "c"]

    def test_missing_phase_rejected(self, registry: PhaseRegistry) -> None:
        definitions = list(registry)[:-1]

        with pytest.raises(ConfigurationError, match="all ten phases"):
            PhaseRegistry(definitions)

    def test_out_of_order_phases_rejected(self, registry: PhaseRegistry) -> None:
        definitions = list(registry)
        definitions[0], definitions[1] = definitions[1], definitions[0]

        with pytest.raises(ConfigurationError):
            PhaseRegistry(definitions)

    def test_empty_phase_rejected(self, registry: PhaseRegistry) -> None:
        definitions = list(registry)
        definitions[2] = PhaseDefinition(PhaseId.CACHING_LAYER, "Caching Layer", ())

        with pytest.raises(ConfigurationError, match="no sub-tasks"):
            PhaseRegistry(definitions)

    def test_duplicate_sub_task_rejected(self) -> None:
        table = {phase: ["a"] for phase in PhaseId}
        table[PhaseId.CACHING_LAYER] = ["a", "a"]

        with pytest.raises(ConfigurationError, match="Duplicate sub-task"):
            PhaseRegistry.from_sub_task_ids(table)

    def test_from_sub_task_ids_requires_every_phase(self) -> None:
        with pytest.raises(ConfigurationError):
            PhaseRegistry.from_sub_task_ids({PhaseId.INFRASTRUCTURE_SETUP: ["a"]})

    def test_from_sub_task_ids_weights_and_estimates(self) -> None:
        table = {phase: ["a"] for phase in PhaseId}
        table[PhaseId.CONTENT_STORAGE] = [SubTaskDefinition("copy", weight=3.0), "verify"]

        registry = PhaseRegistry.from_sub_task_ids(
            table, estimated_durations={PhaseId.CONTENT_STORAGE: 240}
        )

        definition = registry.definition(PhaseId.CONTENT_STORAGE)
        assert definition.total_weight == 4.0
        assert definition.estimated_duration_minutes == 240
        assert registry.definition(PhaseId.CACHING_LAYER).estimated_duration_minutes == 60.0
