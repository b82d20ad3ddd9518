"""
simulator/services/alerts.py

Alert/Warning Emitter.
- check_warning: medium-severity warning for an abnormal (not critical) reading,
  at most once per randomized 5-8 minute interval, patient only
- check_alert: high/critical alert for the hour's selected subject only,
  at most once per 60 minutes, mirrored to every supervisor under the cap

Both channels share one AlertThrottle and hold its lock from the eligibility
check until the throttle is updated, so concurrent ticks cannot double-fire.
"""

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from simulator.constants import ALERT_DEDUP_MIN, NORMAL_RANGES, WARNING_DEDUP_MIN
from simulator.schemas import (
    AlertMetadata,
    AlertRecord,
    AlertType,
    MetricSample,
    MetricType,
    RangeSpec,
    ReadingLevel,
    Severity,
)
from simulator.services.health_status import classify_reading
from simulator.services.notification import publish_alert_event
from simulator.services.persistence import (
    AlertStore,
    RosterProvider,
    StoreWriteError,
)
from simulator.services.throttle import AlertThrottle

logger = structlog.get_logger(__name__)

_HIGH_LOW_ALERT_TYPES: dict[MetricType, tuple[AlertType, AlertType]] = {
    MetricType.HEART_RATE: (AlertType.ELEVATED_HEART_RATE, AlertType.EMERGENCY),
    MetricType.BLOOD_PRESSURE_SYSTOLIC: (AlertType.HIGH_BLOOD_PRESSURE, AlertType.LOW_BLOOD_PRESSURE),
    MetricType.BLOOD_PRESSURE_DIASTOLIC: (AlertType.HIGH_BLOOD_PRESSURE, AlertType.LOW_BLOOD_PRESSURE),
    MetricType.GLUCOSE: (AlertType.HIGH_GLUCOSE, AlertType.LOW_GLUCOSE),
    MetricType.SLEEP_DURATION: (AlertType.IRREGULAR_SLEEP, AlertType.IRREGULAR_SLEEP),
    MetricType.SLEEP_QUALITY: (AlertType.IRREGULAR_SLEEP, AlertType.IRREGULAR_SLEEP),
    MetricType.STEPS: (AlertType.LOW_ACTIVITY, AlertType.LOW_ACTIVITY),
    MetricType.CALORIES_BURNED: (AlertType.LOW_ACTIVITY, AlertType.LOW_ACTIVITY),
}

_TITLE_MAX_LEN: int = 100
_MESSAGE_MAX_LEN: int = 500

Notifier = Callable[[AlertRecord], Awaitable[None]]


def alert_type_for(metric_type: MetricType, is_high: bool) -> AlertType:
    high, low = _HIGH_LOW_ALERT_TYPES.get(
        metric_type, (AlertType.EMERGENCY, AlertType.EMERGENCY)
    )
    return high if is_high else low


def breached_threshold(value: float, spec: RangeSpec, level: ReadingLevel) -> Optional[float]:
    """The bound a non-normal value crossed."""
    if level is ReadingLevel.CRITICAL:
        if spec.critical_min is not None and value < spec.critical_min:
            return spec.critical_min
        return spec.critical_max
    if level is ReadingLevel.ABNORMAL:
        return spec.min if value < spec.min else spec.max
    return None


def _format_value(value: float) -> str:
    return f"{value:g}"


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


class AlertEmitter:
    """Turns selected samples into throttled, deduplicated alert records."""

    def __init__(
        self,
        throttle: AlertThrottle,
        alert_store: AlertStore,
        roster: RosterProvider,
        notify: Notifier = publish_alert_event,
        supervisor_alert_cap: int | None = None,
    ) -> None:
        self.throttle = throttle
        self.alert_store = alert_store
        self.roster = roster
        self.notify = notify
        self.supervisor_alert_cap = (
            settings.supervisor_alert_cap
            if supervisor_alert_cap is None
            else supervisor_alert_cap
        )

    async def _patient_name(self, entity_id: str) -> str:
        try:
            name = await self.roster.display_name(entity_id)
        except Exception as exc:
            logger.warning("display_name_lookup_failed", entity_id=entity_id, error=str(exc))
            name = None
        return name or "Patient"

    async def _already_alerted(
        self, sample: MetricSample, window_min: int, now: datetime, is_warning: bool
    ) -> Optional[bool]:
        """Whether an active record exists for this sample; None if the lookup failed."""
        try:
            existing = await self.alert_store.find_active(
                sample.entity_id, sample.sample_id, now - timedelta(minutes=window_min)
            )
        except SQLAlchemyError as exc:
            logger.error(
                "alert_persist_failed",
                subject_id=sample.entity_id,
                operation="find_active",
                is_warning=is_warning,
                error=str(exc),
            )
            return None
        return existing is not None

    def _build_record(
        self,
        sample: MetricSample,
        spec: RangeSpec,
        level: ReadingLevel,
        severity: Severity,
        is_warning: bool,
        patient_name: str,
        now: datetime,
    ) -> AlertRecord:
        metric_name = sample.metric_type.display_name
        value_text = _format_value(sample.value)
        message = (
            f"{patient_name} has abnormal {metric_name}: {value_text} {sample.unit}. "
            f"Normal range: {_format_value(spec.min)}-{_format_value(spec.max)} {sample.unit}"
        )
        title = (
            f"Warning: Abnormal {metric_name}" if is_warning else f"Abnormal {metric_name} Alert"
        )
        return AlertRecord(
            subject_id=sample.entity_id,
            alert_type=alert_type_for(sample.metric_type, sample.value > spec.max),
            title=_truncate(title, _TITLE_MAX_LEN),
            message=_truncate(message, _MESSAGE_MAX_LEN),
            severity=severity,
            triggered_at=now,
            related_sample_id=sample.sample_id,
            metadata=AlertMetadata(
                threshold=breached_threshold(sample.value, spec, level),
                actual_value=sample.value,
                unit=sample.unit,
                is_warning=is_warning,
            ),
        )

    def _mirror_for_supervisor(
        self, record: AlertRecord, supervisor_id: str, patient_name: str
    ) -> AlertRecord:
        return record.model_copy(
            update={
                "alert_id": None,
                "subject_id": supervisor_id,
                "title": _truncate(f"Patient Alert: {patient_name}", _TITLE_MAX_LEN),
                "message": _truncate(f"{patient_name} - {record.message}", _MESSAGE_MAX_LEN),
                "metadata": record.metadata.model_copy(update={"patient_id": record.subject_id}),
            }
        )

    async def check_warning(self, sample: MetricSample) -> Optional[AlertRecord]:
        """
        Emit a warning for `sample` if the warning channel is open and the value
        is abnormal but not critical. Critical values are left to the alert channel.
        """
        spec = NORMAL_RANGES.get(sample.metric_type)
        if spec is None:
            return None

        async with self.throttle.lock:
            now = self.throttle.now()
            if not self.throttle.warning_due(now):
                return None
            level = classify_reading(sample.value, spec)
            if level is not ReadingLevel.ABNORMAL:
                return None
            duplicate = await self._already_alerted(sample, WARNING_DEDUP_MIN, now, True)
            if duplicate is None:
                return None
            if duplicate:
                logger.debug("warning_deduplicated", entity_id=sample.entity_id)
                return None

            patient_name = await self._patient_name(sample.entity_id)
            record = self._build_record(
                sample, spec, level, Severity.MEDIUM, True, patient_name, now
            )
            try:
                stored = await self.alert_store.insert_alert(record)
            except (StoreWriteError, SQLAlchemyError) as exc:
                logger.error(
                    "alert_persist_failed",
                    subject_id=record.subject_id,
                    is_warning=True,
                    error=str(exc),
                )
                return None
            self.throttle.record_warning(now)

        logger.info(
            "warning_emitted",
            entity_id=sample.entity_id,
            metric_type=sample.metric_type.value,
            value=sample.value,
        )
        await self.notify(stored)
        return stored

    async def check_alert(
        self, sample: MetricSample, roster_ids: Sequence[str]
    ) -> list[AlertRecord]:
        """
        Emit an alert for `sample` if the hourly window is open, its entity is
        the window's selected subject and the value is outside the normal range.

        Returns every record written: the subject's alert followed by the
        supervisor mirrors.
        """
        spec = NORMAL_RANGES.get(sample.metric_type)
        written: list[AlertRecord] = []

        async with self.throttle.lock:
            now = self.throttle.now()
            if not self.throttle.alert_due(now):
                return []
            subject_id = self.throttle.select_subject(now, roster_ids)
            if spec is None or sample.entity_id != subject_id:
                return []
            level = classify_reading(sample.value, spec)
            if level is ReadingLevel.NORMAL:
                return []
            duplicate = await self._already_alerted(sample, ALERT_DEDUP_MIN, now, False)
            if duplicate is None:
                return []
            if duplicate:
                logger.debug("alert_deduplicated", entity_id=sample.entity_id)
                return []

            severity = Severity.CRITICAL if level is ReadingLevel.CRITICAL else Severity.HIGH
            patient_name = await self._patient_name(sample.entity_id)
            record = self._build_record(
                sample, spec, level, severity, False, patient_name, now
            )
            try:
                stored = await self.alert_store.insert_alert(record)
            except (StoreWriteError, SQLAlchemyError) as exc:
                logger.error(
                    "alert_persist_failed",
                    subject_id=record.subject_id,
                    is_warning=False,
                    error=str(exc),
                )
                return []
            self.throttle.record_alert(now)
            written.append(stored)

        logger.info(
            "alert_emitted",
            entity_id=sample.entity_id,
            metric_type=sample.metric_type.value,
            value=sample.value,
            severity=severity.value,
        )
        written.extend(await self._fan_out(stored, patient_name))
        for record in written:
            await self.notify(record)
        return written

    async def _fan_out(self, record: AlertRecord, patient_name: str) -> list[AlertRecord]:
        """Mirror an alert to every supervisor below the active-alert cap."""
        try:
            supervisors = await self.roster.supervisor_ids()
        except Exception as exc:
            logger.error("supervisor_lookup_failed", error=str(exc))
            return []

        mirrors: list[AlertRecord] = []
        for supervisor_id in supervisors:
            try:
                active = await self.alert_store.count_active_alerts(supervisor_id)
                if active >= self.supervisor_alert_cap:
                    logger.info(
                        "supervisor_alert_capped",
                        supervisor_id=supervisor_id,
                        active_alerts=active,
                    )
                    continue
                mirrors.append(
                    await self.alert_store.insert_alert(
                        self._mirror_for_supervisor(record, supervisor_id, patient_name)
                    )
                )
            except Exception as exc:
                logger.error(
                    "alert_persist_failed",
                    subject_id=supervisor_id,
                    patient_id=record.subject_id,
                    error=str(exc),
                )
        return mirrors
