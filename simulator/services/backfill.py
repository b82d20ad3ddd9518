"""
simulator/services/backfill.py

Backfill Generator.
Writes a dense retroactive series per entity by running the same evolution
pipeline over 6-8 reading slots per past day. Each metric walks within the
day only; the first slot of every day cold-starts from the baseline.

Entities that already hold enough samples are skipped, so re-running a
backfill is a no-op at entity granularity.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import numpy as np
import structlog

from config import settings
from simulator.constants import (
    READINGS_PER_DAY_MAX,
    READINGS_PER_DAY_MIN,
    TRACKED_METRICS,
)
from simulator.schemas import Entity, MetricSample, MetricType
from simulator.services.baseline import assign_baseline, index_roster
from simulator.services.evolution import as_utc, generate_sample
from simulator.services.persistence import RosterProvider, SampleStore, StoreWriteError
from simulator.services.throttle import utcnow

logger = structlog.get_logger(__name__)


def skip_threshold(days: int) -> int:
    """Sample count at which an entity counts as already backfilled for `days`."""
    minimum_expected = days * READINGS_PER_DAY_MIN * len(TRACKED_METRICS)
    return min(settings.backfill_skip_threshold, minimum_expected)


def plan_reading_slots(day_start: datetime, rng: np.random.Generator) -> list[datetime]:
    """
    Timestamps for one day's readings, in order.

    Slot i of n falls in hour floor(i / n * 24) at a random minute.
    """
    count = int(rng.integers(READINGS_PER_DAY_MIN, READINGS_PER_DAY_MAX + 1))
    slots = []
    for reading in range(count):
        hour = (reading * 24) // count
        minute = int(rng.integers(0, 60))
        slots.append(day_start + timedelta(hours=hour, minutes=minute))
    return slots


def generate_history(
    entity: Entity,
    days: int,
    now: datetime,
    rng: np.random.Generator,
) -> list[MetricSample]:
    """All samples for the `days` complete local days before `now`, oldest first."""
    if days <= 0:
        raise ValueError(f"days must be positive, got {days}")

    profile = assign_baseline(entity)
    tz = ZoneInfo(settings.circadian_timezone)
    today = as_utc(now).astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)

    history: list[MetricSample] = []
    for day in range(days, 0, -1):
        day_start = today - timedelta(days=day)
        previous: dict[MetricType, MetricSample] = {}
        for slot in plan_reading_slots(day_start, rng):
            timestamp = slot.astimezone(timezone.utc)
            for metric_type in TRACKED_METRICS:
                sample = generate_sample(
                    profile,
                    metric_type,
                    timestamp,
                    previous=previous.get(metric_type),
                    rng=rng,
                )
                if sample is None:
                    continue
                previous[metric_type] = sample
                history.append(sample)
    return history


async def backfill_entity(
    entity: Entity,
    samples: SampleStore,
    days: int | None = None,
    now: datetime | None = None,
    rng: np.random.Generator | None = None,
    batch_size: int | None = None,
) -> int:
    """
    Backfill one entity and return the number of samples written.

    Batches are written sequentially so the entity's latest sample stays
    well defined; duplicate rows count as already applied. A batch that still
    fails after retries stops this entity's backfill.
    """
    days = settings.backfill_days if days is None else days
    if days <= 0:
        raise ValueError(f"days must be positive, got {days}")
    batch_size = batch_size or settings.backfill_batch_size
    rng = rng if rng is not None else np.random.default_rng()
    now = now or utcnow()

    existing = await samples.count_samples(entity.entity_id)
    threshold = skip_threshold(days)
    if existing >= threshold:
        logger.info(
            "backfill_entity_skipped",
            entity_id=entity.entity_id,
            existing_samples=existing,
            threshold=threshold,
        )
        return 0

    history = generate_history(entity, days, now, rng)
    written = 0
    for start in range(0, len(history), batch_size):
        batch = history[start:start + batch_size]
        try:
            await samples.insert_samples(batch, ignore_duplicates=True)
        except StoreWriteError as exc:
            logger.error(
                "backfill_batch_failed",
                entity_id=entity.entity_id,
                batch_start=start,
                written_so_far=written,
                error=str(exc),
            )
            break
        written += len(batch)

    logger.info(
        "backfill_entity_complete",
        entity_id=entity.entity_id,
        days=days,
        samples_written=written,
    )
    return written


async def backfill_population(
    roster: RosterProvider,
    samples: SampleStore,
    days: int | None = None,
    now: datetime | None = None,
    concurrency: int | None = None,
    rng: np.random.Generator | None = None,
) -> int:
    """
    Backfill every active entity; entities run concurrently up to `concurrency`.

    Returns the total number of samples written.
    """
    days = settings.backfill_days if days is None else days
    if days <= 0:
        raise ValueError(f"days must be positive, got {days}")

    entities = index_roster(await roster.active_entity_ids())
    if not entities:
        logger.info("roster_empty", job="backfill")
        return 0

    now = now or utcnow()
    semaphore = asyncio.Semaphore(concurrency or settings.backfill_concurrency)
    parent = rng if rng is not None else np.random.default_rng()
    # One independent stream per entity; generators are not shared across tasks
    child_rngs = parent.spawn(len(entities))

    async def _run(entity: Entity, entity_rng: np.random.Generator) -> int:
        async with semaphore:
            try:
                return await backfill_entity(entity, samples, days=days, now=now, rng=entity_rng)
            except Exception as exc:
                logger.error(
                    "backfill_entity_failed",
                    entity_id=entity.entity_id,
                    error=str(exc),
                )
                return 0

    logger.info("backfill_started", population_size=len(entities), days=days)
    counts = await asyncio.gather(
        *(_run(entity, entity_rng) for entity, entity_rng in zip(entities, child_rngs))
    )
    total = sum(counts)
    logger.info("backfill_complete", population_size=len(entities), samples_written=total)
    return total
