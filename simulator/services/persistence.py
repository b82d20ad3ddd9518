"""
simulator/services/persistence.py

Roster, sample and alert stores.
- Protocols describe what the pipeline needs from its collaborators
- Sql* classes implement them on SQLAlchemy 2.0 async sessions
- Writes retry with exponential backoff, then raise StoreWriteError
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Optional, Protocol, TypeVar

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config import settings
from db.models import Alert, AsyncSessionLocal, HealthMetric, User
from simulator.constants import PATIENT_ROLE, SUPERVISOR_ROLES
from simulator.schemas import (
    AlertMetadata,
    AlertRecord,
    AlertStatus,
    MetricSample,
    MetricType,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StoreWriteError(Exception):
    """A store write failed on every retry attempt."""


# ── Collaborator protocols ───────────────────────────────────

class RosterProvider(Protocol):
    async def active_entity_ids(self) -> list[str]: ...

    async def supervisor_ids(self) -> list[str]: ...

    async def display_name(self, entity_id: str) -> Optional[str]: ...


class SampleStore(Protocol):
    async def insert_samples(
        self, batch: Sequence[MetricSample], ignore_duplicates: bool = False
    ) -> list[MetricSample]: ...

    async def latest_sample(
        self, entity_id: str, metric_type: MetricType
    ) -> Optional[MetricSample]: ...

    async def count_samples(self, entity_id: str) -> int: ...

    async def delete_out_of_bounds(
        self, metric_type: MetricType, low: float, high: float
    ) -> int: ...


class AlertStore(Protocol):
    async def insert_alert(self, record: AlertRecord) -> AlertRecord: ...

    async def count_active_alerts(self, subject_id: str) -> int: ...

    async def find_active(
        self, entity_id: str, sample_id: Optional[int], since: datetime
    ) -> Optional[AlertRecord]: ...


# ── Retry helper ─────────────────────────────────────────────

async def with_retries(
    operation: Callable[[], Awaitable[T]],
    name: str,
    attempts: int | None = None,
    base_delay: float | None = None,
) -> T:
    """
    Run a store write with bounded retries and exponential backoff.

    Integrity errors (duplicate keys) are not retried; the caller decides
    whether they are benign.
    """
    attempts = attempts or settings.store_retry_attempts
    base_delay = settings.store_retry_base_delay_seconds if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            if attempt == attempts:
                logger.error(
                    "store_write_exhausted",
                    operation=name,
                    attempts=attempts,
                    error=str(exc),
                )
                raise StoreWriteError(f"{name} failed after {attempts} attempts") from exc
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "store_write_retry",
                operation=name,
                attempt=attempt,
                delay_seconds=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)
    raise StoreWriteError(f"{name} was not attempted")


# ── Row mapping ──────────────────────────────────────────────

def _sample_to_row(sample: MetricSample) -> dict:
    return {
        "user_id": sample.entity_id,
        "metric_type": sample.metric_type.value,
        "value": sample.value,
        "unit": sample.unit,
        "recorded_at": sample.timestamp,
        "source": sample.source.value,
        "is_active": sample.is_active,
    }


def _row_to_sample(row: HealthMetric) -> MetricSample:
    return MetricSample(
        sample_id=row.id,
        entity_id=row.user_id,
        metric_type=MetricType(row.metric_type),
        value=row.value,
        unit=row.unit,
        timestamp=row.recorded_at,
        source=row.source,
        is_active=row.is_active,
    )


def _row_to_alert(row: Alert) -> AlertRecord:
    return AlertRecord(
        alert_id=row.id,
        subject_id=row.user_id,
        alert_type=row.alert_type,
        title=row.title,
        message=row.message,
        severity=row.severity,
        status=row.status,
        triggered_at=row.triggered_at,
        related_sample_id=row.related_metric_id,
        metadata=AlertMetadata.model_validate(row.details or {}),
    )


# ── SQL implementations ──────────────────────────────────────

class SqlRosterProvider:
    """Reads patients and supervisors from the users table."""

    async def active_entity_ids(self) -> list[str]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(User.user_id).where(
                    User.role == PATIENT_ROLE, User.is_active.is_(True)
                )
            )
            return list(result.scalars().all())

    async def supervisor_ids(self) -> list[str]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(User.user_id).where(
                    User.role.in_(SUPERVISOR_ROLES), User.is_active.is_(True)
                )
            )
            return list(result.scalars().all())

    async def display_name(self, entity_id: str) -> Optional[str]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(User.first_name, User.last_name).where(User.user_id == entity_id)
            )
            row = result.one_or_none()
            if row is None:
                return None
            name = f"{row.first_name or ''} {row.last_name or ''}".strip()
            return name or None


class SqlSampleStore:
    """Append/query access to health_metrics."""

    async def _insert_ignoring_duplicates(self, batch: Sequence[MetricSample]) -> int:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                insert(HealthMetric).prefix_with("IGNORE"),
                [_sample_to_row(sample) for sample in batch],
            )
            await session.commit()
            return result.rowcount if result.rowcount is not None else len(batch)

    async def _apply_ignoring_duplicates(self, batch: Sequence[MetricSample]) -> None:
        inserted = await with_retries(
            lambda: self._insert_ignoring_duplicates(batch), name="insert_samples_ignore"
        )
        if 0 <= inserted < len(batch):
            logger.info(
                "backfill_batch_duplicates_ignored",
                batch_size=len(batch),
                duplicates=len(batch) - inserted,
            )

    async def _insert_returning_ids(self, batch: Sequence[MetricSample]) -> list[MetricSample]:
        async with AsyncSessionLocal() as session:
            rows = [HealthMetric(**_sample_to_row(sample)) for sample in batch]
            session.add_all(rows)
            await session.commit()
            return [_row_to_sample(row) for row in rows]

    async def insert_samples(
        self, batch: Sequence[MetricSample], ignore_duplicates: bool = False
    ) -> list[MetricSample]:
        """
        Append a batch of samples.

        With `ignore_duplicates`, rows colliding on (user, metric, timestamp) are
        skipped silently and the input batch is returned without store ids.
        """
        if not batch:
            return []
        if ignore_duplicates:
            await self._apply_ignoring_duplicates(batch)
            return list(batch)
        try:
            return await with_retries(
                lambda: self._insert_returning_ids(batch), name="insert_samples"
            )
        except IntegrityError as exc:
            logger.warning(
                "duplicate_samples_reapplied",
                batch_size=len(batch),
                error=str(exc),
            )
            await self._apply_ignoring_duplicates(batch)
            return list(batch)

    async def latest_sample(
        self, entity_id: str, metric_type: MetricType
    ) -> Optional[MetricSample]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(HealthMetric)
                .where(
                    HealthMetric.user_id == entity_id,
                    HealthMetric.metric_type == metric_type.value,
                    HealthMetric.is_active.is_(True),
                )
                .order_by(HealthMetric.recorded_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _row_to_sample(row) if row is not None else None

    async def count_samples(self, entity_id: str) -> int:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(func.count())
                .select_from(HealthMetric)
                .where(
                    HealthMetric.user_id == entity_id,
                    HealthMetric.is_active.is_(True),
                )
            )
            return result.scalar_one()

    async def delete_out_of_bounds(
        self, metric_type: MetricType, low: float, high: float
    ) -> int:
        async def _delete() -> int:
            async with AsyncSessionLocal() as session:
                result = await session.execute(
                    delete(HealthMetric).where(
                        and_(
                            HealthMetric.metric_type == metric_type.value,
                            HealthMetric.is_active.is_(True),
                            or_(HealthMetric.value < low, HealthMetric.value > high),
                        )
                    )
                )
                await session.commit()
                return result.rowcount or 0

        return await with_retries(_delete, name="delete_out_of_bounds")


class SqlAlertStore:
    """Append/query access to alerts."""

    async def insert_alert(self, record: AlertRecord) -> AlertRecord:
        async def _insert() -> AlertRecord:
            async with AsyncSessionLocal() as session:
                row = Alert(
                    user_id=record.subject_id,
                    alert_type=record.alert_type.value,
                    title=record.title,
                    message=record.message,
                    severity=record.severity.value,
                    status=record.status.value,
                    triggered_at=record.triggered_at,
                    related_metric_id=record.related_sample_id,
                    details=record.metadata.model_dump(by_alias=True),
                )
                session.add(row)
                await session.commit()
                return record.model_copy(update={"alert_id": row.id})

        return await with_retries(_insert, name="insert_alert")

    async def count_active_alerts(self, subject_id: str) -> int:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Alert)
                .where(
                    Alert.user_id == subject_id,
                    Alert.status == AlertStatus.ACTIVE.value,
                )
            )
            return result.scalar_one()

    async def find_active(
        self, entity_id: str, sample_id: Optional[int], since: datetime
    ) -> Optional[AlertRecord]:
        async with AsyncSessionLocal() as session:
            result = await session.execute(
                select(Alert)
                .where(
                    Alert.user_id == entity_id,
                    Alert.related_metric_id == sample_id
                    if sample_id is not None
                    else Alert.related_metric_id.is_(None),
                    Alert.status == AlertStatus.ACTIVE.value,
                    Alert.triggered_at >= since,
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _row_to_alert(row) if row is not None else None
