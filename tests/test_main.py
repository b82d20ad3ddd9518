"""
tests/test_main.py

Unit tests for the simulator/main.py lifespan.
SQL stores are replaced with in-memory ones; startup steps are mocked.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from structlog.testing import capture_logs

from simulator import main
from simulator.services.persistence import StoreWriteError
from tests.fixtures import InMemoryAlertStore, InMemoryRoster, InMemorySampleStore


def _patch_stores():
    return (
        patch.object(main, "configure_logging"),
        patch.object(main, "SqlRosterProvider", return_value=InMemoryRoster()),
        patch.object(main, "SqlSampleStore", return_value=InMemorySampleStore()),
        patch.object(main, "SqlAlertStore", return_value=InMemoryAlertStore()),
        patch.object(main.settings, "purge_on_startup", True),
        patch.object(main.settings, "backfill_on_startup", True),
    )


@pytest.mark.asyncio
async def test_driver_starts_when_startup_steps_fail() -> None:
    app = FastAPI()
    purge = AsyncMock(side_effect=StoreWriteError("database down"))
    backfill = AsyncMock(side_effect=RuntimeError("roster query failed"))
    logging_patch, roster, samples, alerts, purge_flag, backfill_flag = _patch_stores()

    with logging_patch, roster, samples, alerts, purge_flag, backfill_flag, \
            patch.object(main, "purge_invalid_samples", purge), \
            patch.object(main, "backfill_population", backfill), \
            capture_logs() as logs:
        async with main.lifespan(app):
            assert app.state.scheduler._task is not None
            assert not app.state.scheduler._task.done()

    purge.assert_awaited_once()
    backfill.assert_awaited_once()
    events = [log["event"] for log in logs]
    assert "startup_purge_failed" in events
    assert "startup_backfill_failed" in events
    assert app.state.scheduler._task is None


@pytest.mark.asyncio
async def test_startup_runs_purge_before_backfill() -> None:
    app = FastAPI()
    order: list[str] = []
    purge = AsyncMock(side_effect=lambda samples: order.append("purge"))
    backfill = AsyncMock(side_effect=lambda roster, samples: order.append("backfill"))
    logging_patch, roster, samples, alerts, purge_flag, backfill_flag = _patch_stores()

    with logging_patch, roster, samples, alerts, purge_flag, backfill_flag, \
            patch.object(main, "purge_invalid_samples", purge), \
            patch.object(main, "backfill_population", backfill):
        async with main.lifespan(app):
            assert order == ["purge", "backfill"]
