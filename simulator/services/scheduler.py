"""
simulator/services/scheduler.py

Live Tick Scheduler.
On every period: fetch the roster, advance every tracked metric of every
entity by one step, persist the batch, then offer one random sample to the
warning channel and (when the hourly window is open) an independently chosen
random sample to the alert channel.

The periodic driver never lets a failed tick escape; the next tick still fires.
"""

import asyncio
from typing import Optional

import numpy as np
import structlog

from config import settings
from simulator.constants import TRACKED_METRICS
from simulator.schemas import Entity, MetricSample, TickResult
from simulator.services.alerts import AlertEmitter
from simulator.services.baseline import assign_baseline, index_roster
from simulator.services.evolution import generate_sample
from simulator.services.persistence import (
    AlertStore,
    RosterProvider,
    SampleStore,
    StoreWriteError,
)
from simulator.services.throttle import AlertThrottle

logger = structlog.get_logger(__name__)


class TelemetryScheduler:
    """Owns the throttle state and drives live ticks for the whole roster."""

    def __init__(
        self,
        roster: RosterProvider,
        samples: SampleStore,
        alert_store: AlertStore,
        throttle: Optional[AlertThrottle] = None,
        emitter: Optional[AlertEmitter] = None,
        interval_seconds: float | None = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.roster = roster
        self.samples = samples
        self.throttle = throttle or AlertThrottle()
        self.emitter = emitter or AlertEmitter(self.throttle, alert_store, roster)
        self.interval_seconds = interval_seconds or settings.tick_interval_seconds
        self._rng = rng if rng is not None else np.random.default_rng()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()

    # ── Single tick ──────────────────────────────────────────

    async def _advance_entity(self, entity: Entity, now) -> list[MetricSample]:
        profile = assign_baseline(entity)
        new_samples: list[MetricSample] = []
        for metric_type in TRACKED_METRICS:
            previous = await self.samples.latest_sample(entity.entity_id, metric_type)
            sample = generate_sample(
                profile, metric_type, now, previous=previous, rng=self._rng
            )
            if sample is not None:
                new_samples.append(sample)
        return new_samples

    async def _safe_advance(self, entity: Entity, now) -> Optional[list[MetricSample]]:
        try:
            return await self._advance_entity(entity, now)
        except Exception as exc:
            logger.error(
                "entity_tick_failed",
                entity_id=entity.entity_id,
                error=str(exc),
            )
            return None

    async def _persist(
        self, per_entity: dict[str, list[MetricSample]], failed: list[str]
    ) -> list[MetricSample]:
        """
        Write all new samples in one batch; if that fails for good, retry
        entity by entity so only the failing entities lose this tick.
        """
        batch = [sample for entity_samples in per_entity.values() for sample in entity_samples]
        if not batch:
            return []
        try:
            return await self.samples.insert_samples(batch)
        except StoreWriteError as exc:
            logger.error("tick_persist_failed", batch_size=len(batch), error=str(exc))

        inserted: list[MetricSample] = []
        for entity_id, entity_samples in per_entity.items():
            try:
                inserted.extend(await self.samples.insert_samples(entity_samples))
            except StoreWriteError as exc:
                logger.error(
                    "entity_samples_dropped",
                    entity_id=entity_id,
                    samples=len(entity_samples),
                    error=str(exc),
                )
                failed.append(entity_id)
        return inserted

    def _pick_sample(
        self, entities: list[Entity], by_entity: dict[str, list[MetricSample]]
    ) -> Optional[MetricSample]:
        """One random entity, then one random of its new samples."""
        entity = entities[int(self._rng.integers(len(entities)))]
        candidates = by_entity.get(entity.entity_id)
        if not candidates:
            return None
        return candidates[int(self._rng.integers(len(candidates)))]

    async def _offer_warning(
        self, entities: list[Entity], by_entity: dict[str, list[MetricSample]]
    ) -> int:
        sample = self._pick_sample(entities, by_entity)
        if sample is None:
            return 0
        try:
            return 1 if await self.emitter.check_warning(sample) is not None else 0
        except Exception as exc:
            logger.error(
                "alert_channel_failed",
                channel="warning",
                entity_id=sample.entity_id,
                error=str(exc),
            )
            return 0

    async def _offer_alert(
        self, entities: list[Entity], by_entity: dict[str, list[MetricSample]]
    ) -> int:
        sample = self._pick_sample(entities, by_entity)
        if sample is None:
            return 0
        try:
            written = await self.emitter.check_alert(
                sample, [entity.entity_id for entity in entities]
            )
        except Exception as exc:
            logger.error(
                "alert_channel_failed",
                channel="alert",
                entity_id=sample.entity_id,
                error=str(exc),
            )
            return 0
        return 1 if written else 0

    async def tick(self) -> TickResult:
        """Run one live tick over the full roster."""
        async with self._tick_lock:
            roster_ids = await self.roster.active_entity_ids()
            entities = index_roster(roster_ids)
            if not entities:
                logger.info("roster_empty", job="tick")
                return TickResult()

            now = self.throttle.now()
            logger.info("tick_started", population_size=len(entities))

            results = await asyncio.gather(
                *(self._safe_advance(entity, now) for entity in entities)
            )
            failed = [
                entity.entity_id
                for entity, entity_samples in zip(entities, results)
                if entity_samples is None
            ]
            per_entity = {
                entity.entity_id: entity_samples
                for entity, entity_samples in zip(entities, results)
                if entity_samples
            }

            inserted = await self._persist(per_entity, failed)
            logger.info("samples_persisted", samples=len(inserted))

            by_entity: dict[str, list[MetricSample]] = {}
            for sample in inserted:
                by_entity.setdefault(sample.entity_id, []).append(sample)

            warnings = alerts = 0
            if by_entity:
                warnings = await self._offer_warning(entities, by_entity)
                if self.throttle.alert_due(self.throttle.now()):
                    alerts = await self._offer_alert(entities, by_entity)

            result = TickResult(
                entities=len(entities),
                samples_written=len(inserted),
                warnings_emitted=warnings,
                alerts_emitted=alerts,
                failed_entities=failed,
            )
            logger.info("tick_complete", **result.model_dump())
            return result

    # ── Periodic driver ──────────────────────────────────────

    async def tick_safely(self) -> Optional[TickResult]:
        try:
            return await self.tick()
        except Exception as exc:
            logger.error("tick_failed", error=str(exc), exc_info=True)
            return None

    async def run_forever(self) -> None:
        """Tick immediately, then once per interval until stop() is called."""
        logger.info("scheduler_started", interval_seconds=self.interval_seconds)
        while not self._stop_event.is_set():
            await self.tick_safely()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("scheduler_stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        """Stop the driver and wait for any in-flight tick to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
