"""
tests/test_health_status.py

Unit tests for simulator/services/health_status.py and
simulator/services/cleanup.py.
"""

import pytest

from simulator.constants import NORMAL_RANGES
from simulator.schemas import HealthGroup, MetricType, ObservedStatus, ReadingLevel
from simulator.services.cleanup import purge_invalid_samples
from simulator.services.health_status import (
    assess_entity,
    classify_reading,
    population_report,
)
from tests.fixtures import InMemoryRoster, InMemorySampleStore, build_roster_ids, build_sample

GLUCOSE = NORMAL_RANGES[MetricType.GLUCOSE]


@pytest.mark.parametrize("value, level", [
    (85, ReadingLevel.NORMAL),
    (70, ReadingLevel.NORMAL),
    (100, ReadingLevel.NORMAL),
    (101, ReadingLevel.ABNORMAL),
    (55, ReadingLevel.ABNORMAL),
    (200, ReadingLevel.ABNORMAL),
    (201, ReadingLevel.CRITICAL),
    (49, ReadingLevel.CRITICAL),
])
def test_classify_reading(value: float, level: ReadingLevel) -> None:
    assert classify_reading(value, GLUCOSE) is level


def _latest(**values: float) -> dict:
    return {
        MetricType(name): build_sample(metric_type=MetricType(name), value=value)
        for name, value in values.items()
    }


def test_assess_entity_statuses() -> None:
    assert assess_entity({})[0] is ObservedStatus.NO_DATA
    assert assess_entity(_latest(glucose=85, heart_rate=70))[0] is ObservedStatus.HEALTHY
    assert assess_entity(_latest(glucose=120, heart_rate=70))[0] is ObservedStatus.MONITORING
    assert assess_entity(
        _latest(glucose=120, heart_rate=110, blood_pressure_systolic=130)
    )[0] is ObservedStatus.WARNING
    assert assess_entity(_latest(glucose=85, heart_rate=170)) == (ObservedStatus.CRITICAL, 1, 0, 2)


def test_assess_entity_ignores_unranged_metrics() -> None:
    assert assess_entity(_latest(steps=0))[0] is ObservedStatus.NO_DATA


@pytest.mark.asyncio
async def test_population_report_compares_with_assigned_group() -> None:
    ids = build_roster_ids(2)
    # population of 2: p00 healthy, p01 warning
    samples = InMemorySampleStore([
        build_sample(entity_id="p00", value=85),
        build_sample(entity_id="p01", metric_type=MetricType.HEART_RATE, value=170),
    ])
    report = await population_report(InMemoryRoster(ids), samples)

    assert report.population_size == 2
    first, second = report.entities
    assert first.assigned_group is HealthGroup.HEALTHY
    assert first.observed_status is ObservedStatus.HEALTHY
    assert first.matches_group is True
    assert second.assigned_group is HealthGroup.WARNING
    assert second.observed_status is ObservedStatus.CRITICAL
    assert second.matches_group is False
    assert report.status_counts[ObservedStatus.CRITICAL] == 1
    assert report.status_counts[ObservedStatus.NO_DATA] == 0


@pytest.mark.asyncio
async def test_purge_removes_physically_impossible_samples() -> None:
    samples = InMemorySampleStore([
        build_sample(value=-500),
        build_sample(value=85),
        build_sample(metric_type=MetricType.HEART_RATE, value=400),
        build_sample(metric_type=MetricType.WEIGHT, value=5000),
    ])
    deleted = await purge_invalid_samples(samples)

    assert deleted == 2
    assert sorted(sample.value for sample in samples.samples) == [85, 5000]
