"""
simulator/main.py

FastAPI application entry point for the telemetry simulator.
Startup: configure logging, purge invalid samples, backfill history,
then start the periodic tick driver (which ticks once immediately).
Shutdown: stop the driver and wait for any in-flight tick.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from config import settings
from simulator.log_config import configure_logging
from simulator.routers.simulator import router as simulator_router
from simulator.services.backfill import backfill_population
from simulator.services.cleanup import purge_invalid_samples
from simulator.services.persistence import (
    SqlAlertStore,
    SqlRosterProvider,
    SqlSampleStore,
)
from simulator.services.scheduler import TelemetryScheduler

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle: startup sequence and tick driver."""
    configure_logging(settings.log_level, settings.log_json)
    logger.info(
        "simulator_starting",
        tick_interval_seconds=settings.tick_interval_seconds,
        backfill_days=settings.backfill_days,
    )

    roster = SqlRosterProvider()
    samples = SqlSampleStore()
    scheduler = TelemetryScheduler(roster, samples, SqlAlertStore())
    app.state.scheduler = scheduler

    # Neither step may keep the driver from starting.
    if settings.purge_on_startup:
        try:
            await purge_invalid_samples(samples)
        except Exception as exc:
            logger.error("startup_purge_failed", error=str(exc), exc_info=True)
    if settings.backfill_on_startup:
        try:
            await backfill_population(roster, samples)
        except Exception as exc:
            logger.error("startup_backfill_failed", error=str(exc), exc_info=True)

    scheduler.start()
    yield

    logger.info("simulator_shutting_down")
    await scheduler.stop()


app = FastAPI(
    title="Patient Telemetry Simulator",
    description="Synthetic vital-sign generation, backfill and throttled alerting",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(simulator_router)
