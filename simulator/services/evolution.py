"""
simulator/services/evolution.py

Value Evolution Engine.
Produces the next reading of one metric for one entity as a bounded random
walk toward a freshly drawn target, shaped by time of day and then forced into
the entity's health-group zone.

Pipeline order (each step relies on the previous one):
1. cold start or walk from the previous sample
2. circadian shaping of the target / spread
3. health-group enforcement against the range table
4. physical constraint clamp
5. rounding (snapped back into the enforced zone) and floor at zero
"""

import math
from datetime import datetime, timezone
from functools import lru_cache
from typing import NamedTuple, Optional
from zoneinfo import ZoneInfo

import numpy as np
import structlog

from config import settings
from simulator.constants import (
    CHANGE_RATE_HORIZON_MIN,
    CRITICAL_PUSH,
    DEFAULT_PHYSICAL_BOUNDS,
    HEART_RATE_DAY_HOURS,
    HEART_RATE_DAY_MULTIPLIER,
    HEART_RATE_NIGHT_MULTIPLIER,
    JITTER_FRACTION,
    MAX_CHANGE_RATE,
    METRIC_UNITS,
    NORMAL_RANGES,
    PHYSICAL_BOUNDS,
    ROUNDING_RULES,
    SAFE_ZONE_MARGIN,
    SLEEP_DAMPING,
    SLEEP_UPDATE_HOURS,
    STEPS_FULL_DAY_HOUR,
)
from simulator.schemas import (
    BaselineEntry,
    BaselineProfile,
    HealthGroup,
    MetricSample,
    MetricType,
    RangeSpec,
    RoundingRule,
)

logger = structlog.get_logger(__name__)

# Tolerance when mapping a zone bound onto the rounding grid
_GRID_EPSILON: float = 1e-9

Zone = tuple[Optional[float], Optional[float]]


class CircadianShape(NamedTuple):
    """Time-of-day shaping: `level` scales the target, `spread` scales its variation."""

    level: float = 1.0
    spread: float = 1.0


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from MySQL) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def local_hour(moment: datetime) -> int:
    return as_utc(moment).astimezone(ZoneInfo(settings.circadian_timezone)).hour


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def physical_bounds(metric_type: MetricType) -> tuple[float, float]:
    return PHYSICAL_BOUNDS.get(metric_type, DEFAULT_PHYSICAL_BOUNDS)


def rounding_rule(metric_type: MetricType) -> RoundingRule:
    override = settings.metric_rounding.get(metric_type)
    if override is not None:
        return override
    return ROUNDING_RULES.get(metric_type, RoundingRule.WHOLE)


def round_to_rule(value: float, rule: RoundingRule, zone: Zone | None = None) -> float:
    """
    Round onto the rule's grid, then snap back inside `zone` if rounding left it.

    Zone bounds need not lie on the grid (e.g. a safe zone edge of 95.25 on a
    whole-number metric); the nearest grid point inside the zone is used.
    """
    step = rule.step
    rounded = round(value / step) * step
    if zone is not None:
        lower, upper = zone
        if lower is not None and rounded < lower:
            rounded = math.ceil(lower / step - _GRID_EPSILON) * step
        if upper is not None and rounded > upper:
            rounded = math.floor(upper / step + _GRID_EPSILON) * step
    return max(0.0, round(rounded, rule.digits))


def circadian_shape(metric_type: MetricType, hour: int) -> CircadianShape:
    """Shaping for `metric_type` at local `hour` (0-23)."""
    if metric_type is MetricType.HEART_RATE:
        day_start, day_end = HEART_RATE_DAY_HOURS
        if day_start <= hour <= day_end:
            return CircadianShape(level=HEART_RATE_DAY_MULTIPLIER)
        return CircadianShape(level=HEART_RATE_NIGHT_MULTIPLIER)
    if metric_type is MetricType.STEPS:
        # Fraction of the day's activity accumulated so far
        return CircadianShape(level=min(hour / STEPS_FULL_DAY_HOUR, 1.0))
    if metric_type in (MetricType.SLEEP_DURATION, MetricType.SLEEP_QUALITY):
        window_start, window_end = SLEEP_UPDATE_HOURS
        if window_start <= hour <= window_end:
            return CircadianShape()
        return CircadianShape(spread=SLEEP_DAMPING)
    return CircadianShape()


@lru_cache(maxsize=None)
def _note_missing_range(metric_type: MetricType) -> None:
    # Cached so the configuration gap is logged once per metric type
    logger.info("range_spec_missing", metric_type=metric_type.value)


def _keep_out_of_critical(value: float, spec: RangeSpec, rng: np.random.Generator) -> float:
    """Move a critical value back into the abnormal band on the same side."""
    if spec.critical_min is not None and value < spec.critical_min:
        return spec.critical_min + float(rng.random()) * (spec.min - spec.critical_min)
    if spec.critical_max is not None and value > spec.critical_max:
        return spec.critical_max - float(rng.random()) * (spec.critical_max - spec.max)
    return value


def _push_critical(
    value: float,
    metric_type: MetricType,
    profile: BaselineProfile,
    spec: RangeSpec,
    rng: np.random.Generator,
) -> float:
    direction, margin_low, margin_high = CRITICAL_PUSH[profile.critical_variant][metric_type]
    margin = float(rng.uniform(margin_low, margin_high))
    if direction == "above" and spec.critical_max is not None:
        return spec.critical_max + margin
    if direction == "below" and spec.critical_min is not None:
        return spec.critical_min - margin
    return value


def enforce_health_group(
    value: float,
    metric_type: MetricType,
    profile: BaselineProfile,
    rng: np.random.Generator,
) -> tuple[float, Zone | None]:
    """
    Apply the entity's group policy to an already shaped value.

    Returns the adjusted value and the zone rounding must respect, if any.
    """
    spec = NORMAL_RANGES.get(metric_type)
    if spec is None:
        _note_missing_range(metric_type)
        return value, None

    if profile.health_group is HealthGroup.HEALTHY:
        safe_min, safe_max = spec.safe_zone(SAFE_ZONE_MARGIN)
        return clamp(value, safe_min, safe_max), (safe_min, safe_max)

    if profile.health_group is HealthGroup.WARNING:
        return _keep_out_of_critical(value, spec, rng), (spec.critical_min, spec.critical_max)

    if metric_type in profile.dominant_metrics:
        return _push_critical(value, metric_type, profile, spec, rng), None
    return value, None


def next_value(
    metric_type: MetricType,
    entry: BaselineEntry,
    profile: BaselineProfile,
    now: datetime,
    previous: MetricSample | None = None,
    rng: np.random.Generator | None = None,
) -> float:
    """
    Produce the next reading for one metric.

    `previous` is the entity's most recent stored sample of this metric; when
    absent the value cold-starts from the baseline.
    """
    rng = rng if rng is not None else np.random.default_rng()
    low, high = physical_bounds(metric_type)
    shape = circadian_shape(metric_type, local_hour(now))

    offset = float(rng.uniform(-1.0, 1.0)) * entry.variance * shape.spread
    target = clamp((entry.center + offset) * shape.level, low, high)

    if previous is None:
        value = target
    else:
        position = previous.value
        if not low <= position <= high:
            logger.warning(
                "corrupt_history_reset",
                entity_id=previous.entity_id,
                metric_type=metric_type.value,
                stored_value=position,
                reset_to=entry.center,
            )
            position = entry.center

        elapsed_min = max(
            (as_utc(now) - as_utc(previous.timestamp)).total_seconds() / 60.0, 0.0
        )
        change_rate = min(elapsed_min / CHANGE_RATE_HORIZON_MIN, MAX_CHANGE_RATE)
        jitter = float(rng.uniform(-1.0, 1.0)) * entry.variance * JITTER_FRACTION * shape.spread
        value = clamp(position + (target - position) * change_rate + jitter, low, high)

    value, zone = enforce_health_group(value, metric_type, profile, rng)
    value = clamp(value, low, high)
    return round_to_rule(value, rounding_rule(metric_type), zone)


def generate_sample(
    profile: BaselineProfile,
    metric_type: MetricType,
    now: datetime,
    previous: MetricSample | None = None,
    rng: np.random.Generator | None = None,
) -> MetricSample | None:
    """Build the next MetricSample, or None if the profile has no baseline for the metric."""
    entry = profile.entries.get(metric_type)
    if entry is None:
        return None
    value = next_value(metric_type, entry, profile, now, previous=previous, rng=rng)
    return MetricSample(
        entity_id=profile.entity_id,
        metric_type=metric_type,
        value=value,
        unit=METRIC_UNITS.get(metric_type, "units"),
        timestamp=now,
    )
