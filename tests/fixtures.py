"""
tests/fixtures.py

Shared test data, builders and in-memory stores.
All tests must use these fixtures instead of hardcoding test values or
touching a real database or broker.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np
from sqlalchemy.exc import OperationalError

from simulator.constants import METRIC_UNITS
from simulator.schemas import (
    AlertMetadata,
    AlertRecord,
    AlertStatus,
    AlertType,
    Entity,
    MetricSample,
    MetricType,
    Severity,
)
from simulator.services.persistence import StoreWriteError

TEST_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
TEST_POPULATION = 26
TEST_SEED = 1234


def build_roster_ids(count: int = TEST_POPULATION) -> list[str]:
    """Zero-padded ids so lexicographic order matches numeric order."""
    return [f"p{i:02d}" for i in range(count)]


def build_entity(index: int = 0, population_size: int = TEST_POPULATION) -> Entity:
    return Entity(
        entity_id=build_roster_ids(population_size)[index],
        index=index,
        population_size=population_size,
    )


def build_sample(
    entity_id: str = "p00",
    metric_type: MetricType = MetricType.GLUCOSE,
    value: float = 85.0,
    timestamp: datetime | None = None,
    sample_id: Optional[int] = 1,
) -> MetricSample:
    """Build a MetricSample with sensible defaults for testing."""
    return MetricSample(
        sample_id=sample_id,
        entity_id=entity_id,
        metric_type=metric_type,
        value=value,
        unit=METRIC_UNITS[metric_type],
        timestamp=timestamp or TEST_NOW,
    )


def build_alert(
    subject_id: str = "p00",
    related_sample_id: Optional[int] = 1,
    triggered_at: datetime | None = None,
    is_warning: bool = False,
) -> AlertRecord:
    return AlertRecord(
        subject_id=subject_id,
        alert_type=AlertType.HIGH_GLUCOSE,
        title="Abnormal Glucose Alert",
        message="Patient has abnormal Glucose: 250 mg/dL. Normal range: 70-100 mg/dL",
        severity=Severity.CRITICAL,
        triggered_at=triggered_at or TEST_NOW,
        related_sample_id=related_sample_id,
        metadata=AlertMetadata(threshold=200, actual_value=250, unit="mg/dL", is_warning=is_warning),
    )


def seeded_rng(seed: int = TEST_SEED) -> np.random.Generator:
    return np.random.default_rng(seed)


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime = TEST_NOW) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, minutes: float) -> datetime:
        self.current = self.current + timedelta(minutes=minutes)
        return self.current


# ── In-memory collaborators ──────────────────────────────────

class InMemoryRoster:
    def __init__(
        self,
        entity_ids: Sequence[str] = (),
        supervisors: Sequence[str] = (),
        names: dict[str, str] | None = None,
    ) -> None:
        self.entity_ids = list(entity_ids)
        self.supervisors = list(supervisors)
        self.names = names or {}

    async def active_entity_ids(self) -> list[str]:
        return list(self.entity_ids)

    async def supervisor_ids(self) -> list[str]:
        return list(self.supervisors)

    async def display_name(self, entity_id: str) -> Optional[str]:
        return self.names.get(entity_id)


class InMemorySampleStore:
    """
    Sample store backed by a list.

    `failing_entities`: any batch containing one of these entities raises
    StoreWriteError. `fail_after_batches`: batches beyond this many raise.
    """

    def __init__(
        self,
        samples: Sequence[MetricSample] = (),
        failing_entities: Sequence[str] = (),
        fail_after_batches: Optional[int] = None,
    ) -> None:
        self.samples: list[MetricSample] = []
        self.failing_entities = set(failing_entities)
        self.fail_after_batches = fail_after_batches
        self.insert_calls: list[tuple[int, bool]] = []
        self._next_id = 1
        for sample in samples:
            self._store(sample)

    def _store(self, sample: MetricSample) -> MetricSample:
        stored = sample.model_copy(update={"sample_id": self._next_id})
        self._next_id += 1
        self.samples.append(stored)
        return stored

    async def insert_samples(
        self, batch: Sequence[MetricSample], ignore_duplicates: bool = False
    ) -> list[MetricSample]:
        self.insert_calls.append((len(batch), ignore_duplicates))
        if self.fail_after_batches is not None and len(self.insert_calls) > self.fail_after_batches:
            raise StoreWriteError("store unavailable")
        if any(sample.entity_id in self.failing_entities for sample in batch):
            raise StoreWriteError("store unavailable")
        return [self._store(sample) for sample in batch]

    async def latest_sample(
        self, entity_id: str, metric_type: MetricType
    ) -> Optional[MetricSample]:
        matches = [
            sample
            for sample in self.samples
            if sample.entity_id == entity_id and sample.metric_type is metric_type
        ]
        return max(matches, key=lambda sample: sample.timestamp) if matches else None

    async def count_samples(self, entity_id: str) -> int:
        return sum(1 for sample in self.samples if sample.entity_id == entity_id)

    async def delete_out_of_bounds(
        self, metric_type: MetricType, low: float, high: float
    ) -> int:
        keep = [
            sample
            for sample in self.samples
            if sample.metric_type is not metric_type or low <= sample.value <= high
        ]
        deleted = len(self.samples) - len(keep)
        self.samples = keep
        return deleted

    def for_entity(self, entity_id: str) -> list[MetricSample]:
        return [sample for sample in self.samples if sample.entity_id == entity_id]


class InMemoryAlertStore:
    """
    Alert store backed by a list.

    `active_counts` overrides count_active_alerts per subject;
    `failing_subjects` makes insert_alert raise StoreWriteError for them;
    `failing_lookups` makes find_active raise as a lost connection would.
    """

    def __init__(
        self,
        alerts: Sequence[AlertRecord] = (),
        active_counts: dict[str, int] | None = None,
        failing_subjects: Sequence[str] = (),
        failing_lookups: bool = False,
    ) -> None:
        self.alerts: list[AlertRecord] = []
        self.failing_lookups = failing_lookups
        self.active_counts = active_counts or {}
        self.failing_subjects = set(failing_subjects)
        self._next_id = 1
        for alert in alerts:
            self._store(alert)

    def _store(self, record: AlertRecord) -> AlertRecord:
        stored = record.model_copy(update={"alert_id": self._next_id})
        self._next_id += 1
        self.alerts.append(stored)
        return stored

    async def insert_alert(self, record: AlertRecord) -> AlertRecord:
        if record.subject_id in self.failing_subjects:
            raise StoreWriteError("alert store unavailable")
        return self._store(record)

    async def count_active_alerts(self, subject_id: str) -> int:
        if subject_id in self.active_counts:
            return self.active_counts[subject_id]
        return sum(
            1
            for alert in self.alerts
            if alert.subject_id == subject_id and alert.status is AlertStatus.ACTIVE
        )

    async def find_active(
        self, entity_id: str, sample_id: Optional[int], since: datetime
    ) -> Optional[AlertRecord]:
        if self.failing_lookups:
            raise OperationalError("SELECT", {}, Exception("connection lost"))
        for alert in self.alerts:
            if (
                alert.subject_id == entity_id
                and alert.related_sample_id == sample_id
                and alert.status is AlertStatus.ACTIVE
                and alert.triggered_at >= since
            ):
                return alert
        return None

    def primary_alerts(self) -> list[AlertRecord]:
        """Alerts addressed to patients (not supervisor mirrors, not warnings)."""
        return [
            alert
            for alert in self.alerts
            if alert.metadata.patient_id is None and not alert.metadata.is_warning
        ]

    def warnings(self) -> list[AlertRecord]:
        return [alert for alert in self.alerts if alert.metadata.is_warning]
