"""
worker/main.py

Celery Worker entry point.
Defines the Celery app and the one-shot batch jobs (historical backfill,
invalid-sample purge) that run outside the API process.
"""

import asyncio
from typing import Optional

import structlog
from celery import Celery
from celery.signals import worker_process_init

from config import settings
from simulator.log_config import configure_logging

logger = structlog.get_logger(__name__)

celery_app = Celery(
    "worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.circadian_timezone,
    enable_utc=True,
)


@worker_process_init.connect
def _configure_worker_logging(**_kwargs) -> None:
    configure_logging(settings.log_level, settings.log_json)


async def _run_backfill(days: Optional[int]) -> int:
    from db.models import engine
    from simulator.services.backfill import backfill_population
    from simulator.services.persistence import SqlRosterProvider, SqlSampleStore

    logger.info("backfill_job_starting", days=days or settings.backfill_days)
    try:
        written = await backfill_population(SqlRosterProvider(), SqlSampleStore(), days=days)
    finally:
        # Pooled connections are bound to this asyncio.run() loop
        await engine.dispose()
    logger.info("backfill_job_complete", samples_written=written)
    return written


async def _run_purge() -> int:
    from db.models import engine
    from simulator.services.cleanup import purge_invalid_samples
    from simulator.services.persistence import SqlSampleStore

    try:
        return await purge_invalid_samples(SqlSampleStore())
    finally:
        await engine.dispose()


@celery_app.task(name="worker.tasks.run_backfill")
def run_backfill(days: Optional[int] = None) -> int:
    """
    Backfill the whole active roster.

    Uses asyncio.run() to bridge Celery's sync interface with the async stores.
    """
    return asyncio.run(_run_backfill(days))


@celery_app.task(name="worker.tasks.purge_invalid_samples")
def purge_invalid_samples() -> int:
    """Delete stored samples outside their metric's physical bounds."""
    return asyncio.run(_run_purge())
