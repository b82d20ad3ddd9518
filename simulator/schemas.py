"""
simulator/schemas.py

Closed vocabularies and pydantic data models for the telemetry pipeline.
- MetricType: every metric the platform understands (generated or not)
- Entity / BaselineProfile: who is simulated and around which targets
- MetricSample / AlertRecord: what the pipeline writes
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MetricType(str, Enum):
    """Metric vocabulary shared with the reporting/UI layer."""

    BLOOD_PRESSURE_SYSTOLIC = "blood_pressure_systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood_pressure_diastolic"
    HEART_RATE = "heart_rate"
    STEPS = "steps"
    GLUCOSE = "glucose"
    WEIGHT = "weight"
    HEIGHT = "height"
    TEMPERATURE = "temperature"
    OXYGEN_SATURATION = "oxygen_saturation"
    SLEEP_DURATION = "sleep_duration"
    SLEEP_QUALITY = "sleep_quality"
    CALORIES_BURNED = "calories_burned"
    HYDRATION = "hydration"
    STRESS_LEVEL = "stress_level"
    MOOD = "mood"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class RoundingRule(str, Enum):
    """Precision a metric is reported with."""

    WHOLE = "whole"
    TENTH = "tenth"
    HALF = "half"

    @property
    def step(self) -> float:
        return {"whole": 1.0, "tenth": 0.1, "half": 0.5}[self.value]

    @property
    def digits(self) -> int:
        return 0 if self is RoundingRule.WHOLE else 1


class HealthGroup(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class CriticalVariant(str, Enum):
    """Which metric a critical-group entity is pushed into the critical zone on."""

    BLOOD_PRESSURE = "blood_pressure"
    HEART_RATE = "heart_rate"
    OXYGEN_SATURATION = "oxygen_saturation"
    MIXED = "mixed"


class ReadingLevel(str, Enum):
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    CRITICAL = "critical"


class ObservedStatus(str, Enum):
    """Status derived from an entity's latest readings (dashboard view)."""

    HEALTHY = "healthy"
    MONITORING = "monitoring"
    WARNING = "warning"
    CRITICAL = "critical"
    NO_DATA = "no_data"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class AlertType(str, Enum):
    ELEVATED_HEART_RATE = "elevated_heart_rate"
    HIGH_BLOOD_PRESSURE = "high_blood_pressure"
    LOW_BLOOD_PRESSURE = "low_blood_pressure"
    IRREGULAR_SLEEP = "irregular_sleep"
    LOW_ACTIVITY = "low_activity"
    HIGH_GLUCOSE = "high_glucose"
    LOW_GLUCOSE = "low_glucose"
    EMERGENCY = "emergency"


class SampleSource(str, Enum):
    MANUAL = "manual"
    DEVICE = "device"
    APP = "app"
    IMPORTED = "imported"


class RangeSpec(BaseModel):
    """Normal and critical bounds for one metric type."""

    model_config = ConfigDict(frozen=True)

    metric_type: MetricType
    min: float
    max: float
    critical_min: Optional[float] = None
    critical_max: Optional[float] = None

    def safe_zone(self, margin: float) -> tuple[float, float]:
        """Normal range shrunk by `margin` (a fraction of its width) on each edge."""
        width = self.max - self.min
        return self.min + width * margin, self.max - width * margin


class Entity(BaseModel):
    """A monitored patient with its position in the indexed roster."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    index: int = Field(ge=0)
    population_size: int = Field(gt=0)


class BaselineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    center: float
    variance: float = Field(ge=0)


class BaselineProfile(BaseModel):
    """Per-metric random-walk targets for one entity."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    health_group: HealthGroup
    critical_variant: Optional[CriticalVariant] = None
    dominant_metrics: frozenset[MetricType] = frozenset()
    entries: dict[MetricType, BaselineEntry]


class MetricSample(BaseModel):
    """One timestamped device reading. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    sample_id: Optional[int] = None
    entity_id: str
    metric_type: MetricType
    value: float
    unit: str
    timestamp: datetime
    source: SampleSource = SampleSource.DEVICE
    is_active: bool = True


class AlertMetadata(BaseModel):
    """Serialized with camelCase keys (isWarning, patientId) for display consumers."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    threshold: Optional[float] = None
    actual_value: float
    unit: str
    is_warning: bool = False
    patient_id: Optional[str] = None


class AlertRecord(BaseModel):
    """Alert or warning addressed to a patient or (mirrored) to a supervisor."""

    model_config = ConfigDict(frozen=True)

    alert_id: Optional[int] = None
    subject_id: str
    alert_type: AlertType
    title: str = Field(max_length=100)
    message: str = Field(max_length=500)
    severity: Severity
    status: AlertStatus = AlertStatus.ACTIVE
    triggered_at: datetime
    related_sample_id: Optional[int] = None
    metadata: AlertMetadata


class TickResult(BaseModel):
    """Summary of one live tick."""

    entities: int = 0
    samples_written: int = 0
    warnings_emitted: int = 0
    alerts_emitted: int = 0
    failed_entities: list[str] = []
