"""
simulator/routers/simulator.py

Operational endpoints for the telemetry simulator.
- POST /simulator/tick: run one live tick now
- POST /simulator/backfill: enqueue a historical backfill on the Celery worker
- GET  /simulator/status: observed vs. assigned health status per entity
- GET  /simulator/vocabulary: metric types, units, rounding and ranges
"""

from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from simulator.constants import METRIC_UNITS, NORMAL_RANGES, TRACKED_METRICS
from simulator.schemas import MetricType, RangeSpec, RoundingRule, TickResult
from simulator.services.evolution import rounding_rule
from simulator.services.health_status import PopulationReport, population_report
from simulator.services.scheduler import TelemetryScheduler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/simulator", tags=["simulator"])


class MetricVocabularyEntry(BaseModel):
    metric_type: MetricType
    display_name: str
    unit: str
    rounding: RoundingRule
    generated: bool
    normal_range: Optional[RangeSpec] = None


def _scheduler(request: Request) -> TelemetryScheduler:
    return request.app.state.scheduler


@router.post("/tick", response_model=TickResult)
async def run_tick(request: Request) -> TickResult:
    """Run one live tick outside the regular period."""
    logger.info("manual_tick_requested")
    return await _scheduler(request).tick()


@router.post("/backfill", status_code=202)
async def enqueue_backfill(
    days: Optional[int] = Query(default=None, gt=0),
) -> dict[str, str]:
    """Hand a full-population backfill to the worker."""
    try:
        from worker.main import celery_app

        result = celery_app.send_task("worker.tasks.run_backfill", kwargs={"days": days})
    except Exception as exc:
        logger.error("celery_enqueue_failed", task="run_backfill", error=str(exc))
        raise HTTPException(status_code=503, detail="Backfill worker unavailable") from exc

    logger.info("backfill_task_enqueued", task_id=result.id, days=days)
    return {"status": "enqueued", "task_id": result.id}


@router.get("/status", response_model=PopulationReport)
async def get_status(request: Request) -> PopulationReport:
    scheduler = _scheduler(request)
    return await population_report(scheduler.roster, scheduler.samples)


@router.get("/vocabulary", response_model=list[MetricVocabularyEntry])
async def get_vocabulary() -> list[MetricVocabularyEntry]:
    return [
        MetricVocabularyEntry(
            metric_type=metric_type,
            display_name=metric_type.display_name,
            unit=METRIC_UNITS[metric_type],
            rounding=rounding_rule(metric_type),
            generated=metric_type in TRACKED_METRICS,
            normal_range=NORMAL_RANGES.get(metric_type),
        )
        for metric_type in MetricType
    ]
