"""
simulator/services/cleanup.py

Removes stored samples whose value lies outside the physically plausible
bounds of their metric (corrupted rows, unit mix-ups). Runs once before
backfill on startup and on demand from the worker.
"""

import structlog

from simulator.constants import PHYSICAL_BOUNDS
from simulator.services.persistence import SampleStore

logger = structlog.get_logger(__name__)


async def purge_invalid_samples(samples: SampleStore) -> int:
    """Delete out-of-bounds samples for every bounded metric; return the count."""
    total = 0
    for metric_type, (low, high) in PHYSICAL_BOUNDS.items():
        deleted = await samples.delete_out_of_bounds(metric_type, low, high)
        if deleted:
            logger.warning(
                "invalid_samples_purged",
                metric_type=metric_type.value,
                deleted=deleted,
                low=low,
                high=high,
            )
        total += deleted

    logger.info("purge_complete", deleted=total)
    return total
