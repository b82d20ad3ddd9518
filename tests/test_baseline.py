"""
tests/test_baseline.py

Unit tests for simulator/services/baseline.py.
Covers group partitioning, critical variants, roster indexing and
deterministic profile assignment.
"""

import pytest

from simulator.constants import TRACKED_METRICS
from simulator.schemas import CriticalVariant, Entity, HealthGroup, MetricType
from simulator.services.baseline import (
    HEALTHY_PROFILE,
    assign_baseline,
    critical_variant,
    group_sizes,
    health_group,
    index_roster,
    stable_seed,
)
from tests.fixtures import TEST_POPULATION, build_entity, build_roster_ids


def test_group_sizes_for_default_population() -> None:
    """26 entities split 12 healthy / 8 warning / 6 critical."""
    assert group_sizes(26) == (12, 8, 6)


@pytest.mark.parametrize("population_size", [1, 2, 3, 7, 26, 100, 1001])
def test_group_sizes_cover_population(population_size: int) -> None:
    healthy, warning, critical = group_sizes(population_size)
    assert healthy + warning + critical == population_size
    assert min(healthy, warning, critical) >= 0


def test_group_bands_are_contiguous() -> None:
    groups = [health_group(i, TEST_POPULATION) for i in range(TEST_POPULATION)]
    assert groups[0] is HealthGroup.HEALTHY
    assert groups[11] is HealthGroup.HEALTHY
    assert groups[12] is HealthGroup.WARNING
    assert groups[19] is HealthGroup.WARNING
    assert groups[20] is HealthGroup.CRITICAL
    assert groups[25] is HealthGroup.CRITICAL


def test_single_entity_population_is_critical() -> None:
    assert health_group(0, 1) is HealthGroup.CRITICAL


@pytest.mark.parametrize("index, population_size", [(-1, 10), (10, 10), (0, 0)])
def test_health_group_rejects_invalid_index(index: int, population_size: int) -> None:
    with pytest.raises(ValueError):
        health_group(index, population_size)


def test_group_sizes_rejects_empty_population() -> None:
    with pytest.raises(ValueError):
        group_sizes(0)


def test_critical_variant_rotates_by_index() -> None:
    assert critical_variant(20) is CriticalVariant.BLOOD_PRESSURE
    assert critical_variant(21) is CriticalVariant.HEART_RATE
    assert critical_variant(22) is CriticalVariant.OXYGEN_SATURATION
    assert critical_variant(23) is CriticalVariant.MIXED
    assert critical_variant(25) is CriticalVariant.HEART_RATE


def test_index_roster_sorts_and_deduplicates() -> None:
    entities = index_roster(["p02", "p00", "p01", "p00"])
    assert [entity.entity_id for entity in entities] == ["p00", "p01", "p02"]
    assert [entity.index for entity in entities] == [0, 1, 2]
    assert all(entity.population_size == 3 for entity in entities)


def test_index_roster_empty() -> None:
    assert index_roster([]) == []


def test_index_roster_is_order_independent() -> None:
    ids = build_roster_ids()
    assert index_roster(ids) == index_roster(list(reversed(ids)))


def test_assign_baseline_is_deterministic() -> None:
    entity = build_entity(index=3)
    first = assign_baseline(entity)
    assign_baseline.cache_clear()
    second = assign_baseline(Entity(entity_id=entity.entity_id, index=3, population_size=TEST_POPULATION))
    assert first == second


def test_stable_seed_depends_on_entity_and_metric() -> None:
    assert stable_seed("p00", MetricType.GLUCOSE) == stable_seed("p00", MetricType.GLUCOSE)
    assert stable_seed("p00", MetricType.GLUCOSE) != stable_seed("p01", MetricType.GLUCOSE)
    assert stable_seed("p00", MetricType.GLUCOSE) != stable_seed("p00", MetricType.HEART_RATE)


def test_healthy_profile_is_personalized_within_bounds() -> None:
    profile = assign_baseline(build_entity(index=0))
    assert profile.health_group is HealthGroup.HEALTHY
    assert profile.critical_variant is None
    assert profile.dominant_metrics == frozenset()
    assert set(profile.entries) == set(TRACKED_METRICS)
    for metric_type, (center, variance) in HEALTHY_PROFILE.items():
        entry = profile.entries[metric_type]
        assert entry.variance == variance
        assert abs(entry.center - center) <= 0.1 * variance + 1e-9


def test_critical_profile_carries_dominant_metrics() -> None:
    heart = assign_baseline(build_entity(index=25))
    assert heart.health_group is HealthGroup.CRITICAL
    assert heart.critical_variant is CriticalVariant.HEART_RATE
    assert heart.dominant_metrics == frozenset({MetricType.HEART_RATE})

    mixed = assign_baseline(build_entity(index=23))
    assert mixed.critical_variant is CriticalVariant.MIXED
    assert mixed.dominant_metrics == frozenset(
        {MetricType.OXYGEN_SATURATION, MetricType.SLEEP_DURATION}
    )


def test_weight_and_height_have_no_baseline() -> None:
    profile = assign_baseline(build_entity(index=0))
    assert MetricType.WEIGHT not in profile.entries
    assert MetricType.HEIGHT not in profile.entries
