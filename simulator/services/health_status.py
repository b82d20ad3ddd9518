"""
simulator/services/health_status.py

Observed health status, i.e. what a dashboard would show for an entity
based on its latest readings, compared with the group it was assigned.
"""

from collections import Counter

import structlog
from pydantic import BaseModel

from simulator.constants import NORMAL_RANGES, WARNING_STATUS_MIN_ABNORMAL
from simulator.schemas import (
    HealthGroup,
    MetricSample,
    MetricType,
    ObservedStatus,
    RangeSpec,
    ReadingLevel,
)
from simulator.services.baseline import health_group, index_roster
from simulator.services.persistence import RosterProvider, SampleStore

logger = structlog.get_logger(__name__)

# Observed statuses compatible with each assigned group
_EXPECTED_STATUSES: dict[HealthGroup, frozenset[ObservedStatus]] = {
    HealthGroup.HEALTHY: frozenset({ObservedStatus.HEALTHY, ObservedStatus.MONITORING}),
    HealthGroup.WARNING: frozenset({ObservedStatus.WARNING, ObservedStatus.MONITORING}),
    HealthGroup.CRITICAL: frozenset({ObservedStatus.CRITICAL}),
}


class EntityStatus(BaseModel):
    entity_id: str
    index: int
    assigned_group: HealthGroup
    observed_status: ObservedStatus
    critical_count: int
    abnormal_count: int
    metrics_seen: int
    matches_group: bool


class PopulationReport(BaseModel):
    population_size: int
    status_counts: dict[ObservedStatus, int]
    entities: list[EntityStatus]


def classify_reading(value: float, spec: RangeSpec) -> ReadingLevel:
    """Compare one value against its metric's normal and critical bounds."""
    if spec.critical_min is not None and value < spec.critical_min:
        return ReadingLevel.CRITICAL
    if spec.critical_max is not None and value > spec.critical_max:
        return ReadingLevel.CRITICAL
    if value < spec.min or value > spec.max:
        return ReadingLevel.ABNORMAL
    return ReadingLevel.NORMAL


def assess_entity(latest: dict[MetricType, MetricSample]) -> tuple[ObservedStatus, int, int, int]:
    """
    Derive the observed status from the latest sample of each metric.

    Returns (status, critical_count, abnormal_count, ranged_metrics_seen).
    """
    critical = abnormal = seen = 0
    for metric_type, sample in latest.items():
        spec = NORMAL_RANGES.get(metric_type)
        if spec is None:
            continue
        seen += 1
        level = classify_reading(sample.value, spec)
        if level is ReadingLevel.CRITICAL:
            critical += 1
        elif level is ReadingLevel.ABNORMAL:
            abnormal += 1

    if seen == 0:
        status = ObservedStatus.NO_DATA
    elif critical > 0:
        status = ObservedStatus.CRITICAL
    elif abnormal >= WARNING_STATUS_MIN_ABNORMAL:
        status = ObservedStatus.WARNING
    elif abnormal > 0:
        status = ObservedStatus.MONITORING
    else:
        status = ObservedStatus.HEALTHY
    return status, critical, abnormal, seen


async def population_report(
    roster: RosterProvider,
    samples: SampleStore,
) -> PopulationReport:
    """Assess every active entity from its stored latest samples."""
    entities = index_roster(await roster.active_entity_ids())
    statuses: list[EntityStatus] = []

    for entity in entities:
        latest: dict[MetricType, MetricSample] = {}
        for metric_type in NORMAL_RANGES:
            sample = await samples.latest_sample(entity.entity_id, metric_type)
            if sample is not None:
                latest[metric_type] = sample

        status, critical, abnormal, seen = assess_entity(latest)
        group = health_group(entity.index, entity.population_size)
        statuses.append(
            EntityStatus(
                entity_id=entity.entity_id,
                index=entity.index,
                assigned_group=group,
                observed_status=status,
                critical_count=critical,
                abnormal_count=abnormal,
                metrics_seen=seen,
                matches_group=status in _EXPECTED_STATUSES[group],
            )
        )

    counts = Counter(status.observed_status for status in statuses)
    report = PopulationReport(
        population_size=len(entities),
        status_counts={status: counts.get(status, 0) for status in ObservedStatus},
        entities=statuses,
    )
    logger.info(
        "population_report_built",
        population_size=report.population_size,
        mismatches=sum(1 for status in statuses if not status.matches_group),
    )
    return report
