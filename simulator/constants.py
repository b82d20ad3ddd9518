"""
simulator/constants.py

Clinical ranges, physical constraints and timing constants used by the
telemetry pipeline. All numeric thresholds must be referenced from this module;
magic numbers in business logic are prohibited.
"""

from simulator.schemas import (
    CriticalVariant,
    MetricType,
    RangeSpec,
    RoundingRule,
)

# ── Metric vocabulary ────────────────────────────────────────
# Generated on every tick / backfill slot, in this order.
TRACKED_METRICS: tuple[MetricType, ...] = (
    MetricType.HEART_RATE,
    MetricType.BLOOD_PRESSURE_SYSTOLIC,
    MetricType.BLOOD_PRESSURE_DIASTOLIC,
    MetricType.STEPS,
    MetricType.GLUCOSE,
    MetricType.TEMPERATURE,
    MetricType.OXYGEN_SATURATION,
    MetricType.SLEEP_DURATION,
    MetricType.SLEEP_QUALITY,
    MetricType.HYDRATION,
    MetricType.STRESS_LEVEL,
    MetricType.MOOD,
    MetricType.CALORIES_BURNED,
)

METRIC_UNITS: dict[MetricType, str] = {
    MetricType.BLOOD_PRESSURE_SYSTOLIC: "mmHg",
    MetricType.BLOOD_PRESSURE_DIASTOLIC: "mmHg",
    MetricType.HEART_RATE: "bpm",
    MetricType.STEPS: "steps",
    MetricType.GLUCOSE: "mg/dL",
    MetricType.WEIGHT: "kg",
    MetricType.HEIGHT: "cm",
    MetricType.TEMPERATURE: "°C",
    MetricType.OXYGEN_SATURATION: "%",
    MetricType.SLEEP_DURATION: "hours",
    MetricType.SLEEP_QUALITY: "scale_1_10",
    MetricType.CALORIES_BURNED: "calories",
    MetricType.HYDRATION: "liters",
    MetricType.STRESS_LEVEL: "scale_1_10",
    MetricType.MOOD: "scale_1_5",
}

# Metrics not listed here are reported as whole numbers.
ROUNDING_RULES: dict[MetricType, RoundingRule] = {
    MetricType.TEMPERATURE: RoundingRule.TENTH,
    MetricType.SLEEP_DURATION: RoundingRule.TENTH,
    MetricType.HYDRATION: RoundingRule.TENTH,
    MetricType.SLEEP_QUALITY: RoundingRule.HALF,
    MetricType.STRESS_LEVEL: RoundingRule.HALF,
    MetricType.MOOD: RoundingRule.HALF,
}

# ── Range table (normal and critical bounds) ─────────────────
NORMAL_RANGES: dict[MetricType, RangeSpec] = {
    spec.metric_type: spec
    for spec in (
        RangeSpec(metric_type=MetricType.BLOOD_PRESSURE_SYSTOLIC, min=90, max=120, critical_min=70, critical_max=180),
        RangeSpec(metric_type=MetricType.BLOOD_PRESSURE_DIASTOLIC, min=60, max=80, critical_min=40, critical_max=120),
        RangeSpec(metric_type=MetricType.HEART_RATE, min=60, max=100, critical_min=40, critical_max=150),
        RangeSpec(metric_type=MetricType.TEMPERATURE, min=36.1, max=37.2, critical_min=35, critical_max=38.5),
        RangeSpec(metric_type=MetricType.OXYGEN_SATURATION, min=95, max=100, critical_min=90, critical_max=100),
        RangeSpec(metric_type=MetricType.GLUCOSE, min=70, max=100, critical_min=50, critical_max=200),
        RangeSpec(metric_type=MetricType.SLEEP_DURATION, min=7, max=9, critical_min=4, critical_max=12),
        RangeSpec(metric_type=MetricType.SLEEP_QUALITY, min=6, max=10, critical_min=1, critical_max=10),
        RangeSpec(metric_type=MetricType.HYDRATION, min=1.5, max=4, critical_min=0.5, critical_max=6),
        RangeSpec(metric_type=MetricType.STRESS_LEVEL, min=1, max=5, critical_min=1, critical_max=10),
        RangeSpec(metric_type=MetricType.MOOD, min=3, max=5, critical_min=1, critical_max=5),
    )
}

# Healthy-group samples stay inside the normal range shrunk by this fraction per edge
SAFE_ZONE_MARGIN: float = 0.05

# ── Physical constraints (absolute clamp, wider than ranges) ─
PHYSICAL_BOUNDS: dict[MetricType, tuple[float, float]] = {
    MetricType.HEART_RATE: (40, 200),
    MetricType.BLOOD_PRESSURE_SYSTOLIC: (70, 200),
    MetricType.BLOOD_PRESSURE_DIASTOLIC: (40, 120),
    MetricType.STEPS: (0, 50000),
    MetricType.GLUCOSE: (50, 300),
    MetricType.TEMPERATURE: (35, 40),
    MetricType.OXYGEN_SATURATION: (85, 100),
    MetricType.SLEEP_DURATION: (0, 16),
    MetricType.SLEEP_QUALITY: (0, 10),
    MetricType.HYDRATION: (0, 10),
    MetricType.STRESS_LEVEL: (1, 10),
    MetricType.MOOD: (1, 5),
    MetricType.CALORIES_BURNED: (0, 10000),
}
DEFAULT_PHYSICAL_BOUNDS: tuple[float, float] = (0, 1000)

# ── Critical push (critical group, dominant metric) ──────────
# metric -> (direction, margin_low, margin_high); margin drawn from [low, high)
# and applied beyond critical_max ("above") or below critical_min ("below").
CRITICAL_PUSH: dict[CriticalVariant, dict[MetricType, tuple[str, float, float]]] = {
    CriticalVariant.BLOOD_PRESSURE: {
        MetricType.BLOOD_PRESSURE_SYSTOLIC: ("above", 1.0, 15.0),
    },
    CriticalVariant.HEART_RATE: {
        MetricType.HEART_RATE: ("above", 1.0, 30.0),
    },
    CriticalVariant.OXYGEN_SATURATION: {
        MetricType.OXYGEN_SATURATION: ("below", 1.0, 5.0),
    },
    CriticalVariant.MIXED: {
        MetricType.OXYGEN_SATURATION: ("below", 1.0, 5.0),
        MetricType.SLEEP_DURATION: ("below", 0.5, 4.0),
    },
}

# ── Random walk ──────────────────────────────────────────────
MAX_CHANGE_RATE: float = 0.15
CHANGE_RATE_HORIZON_MIN: float = 120.0
JITTER_FRACTION: float = 0.1  # of variance, each direction
PERSONALIZATION_FRACTION: float = 0.1  # of variance, each direction

# ── Circadian shaping (local hours, inclusive) ───────────────
HEART_RATE_DAY_HOURS: tuple[int, int] = (6, 22)
HEART_RATE_DAY_MULTIPLIER: float = 1.1
HEART_RATE_NIGHT_MULTIPLIER: float = 0.9
STEPS_FULL_DAY_HOUR: int = 12
SLEEP_UPDATE_HOURS: tuple[int, int] = (6, 10)
SLEEP_DAMPING: float = 0.5

# ── Throttle windows (minutes) ───────────────────────────────
ALERT_WINDOW_MIN: int = 60
WARNING_INTERVAL_MIN: float = 5.0
WARNING_INTERVAL_MAX: float = 8.0
WARNING_DEDUP_MIN: int = 5
ALERT_DEDUP_MIN: int = 60

# ── Roster roles ─────────────────────────────────────────────
PATIENT_ROLE: str = "patient"
SUPERVISOR_ROLES: tuple[str, ...] = ("provider", "doctor", "admin")

# ── Backfill ─────────────────────────────────────────────────
READINGS_PER_DAY_MIN: int = 6
READINGS_PER_DAY_MAX: int = 8

# ── Observed status ──────────────────────────────────────────
WARNING_STATUS_MIN_ABNORMAL: int = 3
