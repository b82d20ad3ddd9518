"""
simulator/services/notification.py

Hands written alert records to the display/notification layer.
Currently implements a structured-log stub; push and websocket delivery
belong to the consuming services.
"""

import structlog

from simulator.schemas import AlertRecord

logger = structlog.get_logger(__name__)


async def publish_alert_event(record: AlertRecord) -> None:
    """
    Publish a newly written alert or warning.

    Called by the emitter after each successful write, including supervisor
    mirrors. `metadata.is_warning` tells consumers which channel produced it.
    """
    logger.info(
        "alert_event_published",
        alert_id=record.alert_id,
        subject_id=record.subject_id,
        alert_type=record.alert_type.value,
        severity=record.severity.value,
        is_warning=record.metadata.is_warning,
        patient_id=record.metadata.patient_id,
    )
