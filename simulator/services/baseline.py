"""
simulator/services/baseline.py

Baseline Profile Assigner.
- index_roster: the single place where roster ids become indexed entities
- health_group: healthy / warning / critical band from (index, population size)
- assign_baseline: per-metric (center, variance) targets for one entity

Everything here is pure: identical inputs always give identical profiles,
so live ticks and backfill agree on an entity's tier.
"""

import hashlib
import math
from collections.abc import Iterable
from functools import lru_cache

import numpy as np

from config import settings
from simulator.constants import CRITICAL_PUSH, PERSONALIZATION_FRACTION
from simulator.schemas import (
    BaselineEntry,
    BaselineProfile,
    CriticalVariant,
    Entity,
    HealthGroup,
    MetricType,
)

M = MetricType

# ── Profile tables: metric -> (center, variance) ─────────────
# Healthy centers sit well inside the normal range.
HEALTHY_PROFILE: dict[MetricType, tuple[float, float]] = {
    M.HEART_RATE: (70, 8),
    M.BLOOD_PRESSURE_SYSTOLIC: (110, 8),
    M.BLOOD_PRESSURE_DIASTOLIC: (70, 5),
    M.STEPS: (8000, 2000),
    M.GLUCOSE: (85, 10),
    M.TEMPERATURE: (36.6, 0.3),
    M.OXYGEN_SATURATION: (98, 1),
    M.SLEEP_DURATION: (7.5, 0.5),
    M.SLEEP_QUALITY: (8, 1),
    M.HYDRATION: (2.5, 0.4),
    M.STRESS_LEVEL: (2.5, 1),
    M.MOOD: (4, 0.5),
    M.CALORIES_BURNED: (2200, 300),
}

# Warning centers straddle the normal bounds on several metrics, never critical.
WARNING_PROFILE: dict[MetricType, tuple[float, float]] = {
    M.HEART_RATE: (85, 10),
    M.BLOOD_PRESSURE_SYSTOLIC: (125, 10),
    M.BLOOD_PRESSURE_DIASTOLIC: (82, 6),
    M.STEPS: (4000, 1500),
    M.GLUCOSE: (105, 12),
    M.TEMPERATURE: (36.7, 0.3),
    M.OXYGEN_SATURATION: (96, 1.5),
    M.SLEEP_DURATION: (6.0, 0.8),
    M.SLEEP_QUALITY: (5.5, 1.5),
    M.HYDRATION: (1.8, 0.4),
    M.STRESS_LEVEL: (6, 1.5),
    M.MOOD: (2.5, 0.8),
    M.CALORIES_BURNED: (1500, 250),
}

CRITICAL_PROFILES: dict[CriticalVariant, dict[MetricType, tuple[float, float]]] = {
    CriticalVariant.BLOOD_PRESSURE: {
        M.HEART_RATE: (95, 10),
        M.BLOOD_PRESSURE_SYSTOLIC: (165, 10),
        M.BLOOD_PRESSURE_DIASTOLIC: (105, 8),
        M.STEPS: (2000, 1000),
        M.GLUCOSE: (180, 15),
        M.TEMPERATURE: (37.8, 0.4),
        M.OXYGEN_SATURATION: (92, 2),
        M.SLEEP_DURATION: (4.5, 1.0),
        M.SLEEP_QUALITY: (3, 1.5),
        M.HYDRATION: (1.2, 0.4),
        M.STRESS_LEVEL: (8, 1.5),
        M.MOOD: (2, 0.8),
        M.CALORIES_BURNED: (1200, 200),
    },
    CriticalVariant.HEART_RATE: {
        M.HEART_RATE: (140, 10),
        M.BLOOD_PRESSURE_SYSTOLIC: (145, 12),
        M.BLOOD_PRESSURE_DIASTOLIC: (95, 8),
        M.STEPS: (3000, 1500),
        M.GLUCOSE: (160, 20),
        M.TEMPERATURE: (37.5, 0.3),
        M.OXYGEN_SATURATION: (93, 2),
        M.SLEEP_DURATION: (5.0, 1.0),
        M.SLEEP_QUALITY: (4, 1.5),
        M.HYDRATION: (1.5, 0.4),
        M.STRESS_LEVEL: (8.5, 1.0),
        M.MOOD: (1.8, 0.7),
        M.CALORIES_BURNED: (1400, 250),
    },
    CriticalVariant.OXYGEN_SATURATION: {
        M.HEART_RATE: (90, 12),
        M.BLOOD_PRESSURE_SYSTOLIC: (150, 15),
        M.BLOOD_PRESSURE_DIASTOLIC: (100, 10),
        M.STEPS: (2500, 1200),
        M.GLUCOSE: (170, 18),
        M.TEMPERATURE: (37.2, 0.5),
        M.OXYGEN_SATURATION: (88, 2),
        M.SLEEP_DURATION: (4.0, 1.2),
        M.SLEEP_QUALITY: (2.5, 1.5),
        M.HYDRATION: (1.0, 0.4),
        M.STRESS_LEVEL: (9, 0.8),
        M.MOOD: (1.5, 0.8),
        M.CALORIES_BURNED: (1100, 200),
    },
    CriticalVariant.MIXED: {
        M.HEART_RATE: (135, 12),
        M.BLOOD_PRESSURE_SYSTOLIC: (170, 12),
        M.BLOOD_PRESSURE_DIASTOLIC: (110, 8),
        M.STEPS: (1500, 800),
        M.GLUCOSE: (190, 15),
        M.TEMPERATURE: (38.0, 0.4),
        M.OXYGEN_SATURATION: (89, 2),
        M.SLEEP_DURATION: (3.5, 1.0),
        M.SLEEP_QUALITY: (2, 1.5),
        M.HYDRATION: (0.9, 0.3),
        M.STRESS_LEVEL: (9.5, 0.5),
        M.MOOD: (1.2, 0.6),
        M.CALORIES_BURNED: (1000, 200),
    },
}

# index mod 4 picks the variant in this order
_VARIANT_ROTATION: tuple[CriticalVariant, ...] = (
    CriticalVariant.BLOOD_PRESSURE,
    CriticalVariant.HEART_RATE,
    CriticalVariant.OXYGEN_SATURATION,
    CriticalVariant.MIXED,
)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def group_sizes(
    population_size: int,
    healthy_ratio: float | None = None,
    warning_ratio: float | None = None,
) -> tuple[int, int, int]:
    """Return (healthy, warning, critical) band sizes for a population."""
    if population_size <= 0:
        raise ValueError(f"population_size must be positive, got {population_size}")
    healthy_ratio = settings.healthy_ratio if healthy_ratio is None else healthy_ratio
    warning_ratio = settings.warning_ratio if warning_ratio is None else warning_ratio

    healthy = min(_round_half_up(population_size * healthy_ratio), population_size)
    warning = min(_round_half_up(population_size * warning_ratio), population_size - healthy)
    return healthy, warning, population_size - healthy - warning


def health_group(index: int, population_size: int) -> HealthGroup:
    """Health band of the entity at `index` in a roster of `population_size`."""
    if not 0 <= index < population_size:
        raise ValueError(
            f"index {index} outside population of size {population_size}"
        )
    healthy, warning, _ = group_sizes(population_size)
    if index < healthy:
        return HealthGroup.HEALTHY
    if index < healthy + warning:
        return HealthGroup.WARNING
    return HealthGroup.CRITICAL


def critical_variant(index: int) -> CriticalVariant:
    return _VARIANT_ROTATION[index % len(_VARIANT_ROTATION)]


def index_roster(entity_ids: Iterable[str]) -> list[Entity]:
    """
    Assign stable indices to a freshly fetched roster.

    The roster provider does not guarantee ordering, so ids are de-duplicated
    and sorted before indexing.
    """
    ordered = sorted(set(entity_ids))
    return [
        Entity(entity_id=entity_id, index=i, population_size=len(ordered))
        for i, entity_id in enumerate(ordered)
    ]


def stable_seed(entity_id: str, metric_type: MetricType) -> int:
    """64-bit seed derived from (entity id, metric type); stable across processes."""
    digest = hashlib.blake2b(
        f"{entity_id}:{metric_type.value}".encode("utf-8"), digest_size=8
    ).digest()
    return int.from_bytes(digest, "big")


def _personal_offset(entity_id: str, metric_type: MetricType, variance: float) -> float:
    rng = np.random.default_rng(stable_seed(entity_id, metric_type))
    return float(rng.uniform(-1.0, 1.0)) * variance * PERSONALIZATION_FRACTION


@lru_cache(maxsize=4096)
def assign_baseline(entity: Entity) -> BaselineProfile:
    """Build (and cache) the baseline profile for an indexed entity."""
    group = health_group(entity.index, entity.population_size)

    variant: CriticalVariant | None = None
    dominant: frozenset[MetricType] = frozenset()
    if group is HealthGroup.HEALTHY:
        table = HEALTHY_PROFILE
    elif group is HealthGroup.WARNING:
        table = WARNING_PROFILE
    else:
        variant = critical_variant(entity.index)
        table = CRITICAL_PROFILES[variant]
        dominant = frozenset(CRITICAL_PUSH[variant])

    entries = {
        metric_type: BaselineEntry(
            center=center + _personal_offset(entity.entity_id, metric_type, variance),
            variance=variance,
        )
        for metric_type, (center, variance) in table.items()
    }
    return BaselineProfile(
        entity_id=entity.entity_id,
        health_group=group,
        critical_variant=variant,
        dominant_metrics=dominant,
        entries=entries,
    )
