"""
simulator/services/throttle.py

Population-wide throttle state for the alert and warning channels.
One AlertThrottle is owned by the scheduler and passed to the emitter;
every read-decide-write sequence on it must hold `lock`.
"""

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np
import structlog

from simulator.constants import (
    ALERT_WINDOW_MIN,
    WARNING_INTERVAL_MAX,
    WARNING_INTERVAL_MIN,
)

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertThrottle:
    """
    Last-alert time, last-warning time and the alert subject for the hour.

    The clock and random generator are injectable so that tests can replay
    exact windows.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[np.random.Generator] = None,
        alert_window: timedelta = timedelta(minutes=ALERT_WINDOW_MIN),
        warning_interval_range: tuple[float, float] = (
            WARNING_INTERVAL_MIN,
            WARNING_INTERVAL_MAX,
        ),
    ) -> None:
        self.clock = clock
        self.lock = asyncio.Lock()
        self._rng = rng if rng is not None else np.random.default_rng()
        self._alert_window = alert_window
        self._warning_interval_range = warning_interval_range

        self.last_alert_at: Optional[datetime] = None
        self.last_warning_at: Optional[datetime] = None
        self.warning_interval: Optional[timedelta] = None
        self.selected_subject_id: Optional[str] = None
        self.selected_at: Optional[datetime] = None

    def now(self) -> datetime:
        return self.clock()

    # ── Warning channel ──────────────────────────────────────

    def warning_due(self, now: datetime) -> bool:
        if self.last_warning_at is None or self.warning_interval is None:
            return True
        return now - self.last_warning_at >= self.warning_interval

    def record_warning(self, now: datetime) -> None:
        """Mark a warning as written and draw the interval until the next one."""
        low, high = self._warning_interval_range
        self.last_warning_at = now
        self.warning_interval = timedelta(minutes=float(self._rng.uniform(low, high)))
        logger.debug(
            "warning_interval_drawn",
            next_warning_in_min=self.warning_interval.total_seconds() / 60.0,
        )

    # ── Alert channel ────────────────────────────────────────

    def alert_due(self, now: datetime) -> bool:
        if self.last_alert_at is None:
            return True
        return now - self.last_alert_at >= self._alert_window

    def record_alert(self, now: datetime) -> None:
        self.last_alert_at = now

    def select_subject(self, now: datetime, roster_ids: Sequence[str]) -> Optional[str]:
        """
        Return the only entity allowed to raise an alert in the current window.

        A new subject is drawn when none is selected, when the selection is a
        full window old, or when the selected entity left the roster.
        """
        if not roster_ids:
            return None
        stale = (
            self.selected_subject_id is None
            or self.selected_at is None
            or now - self.selected_at >= self._alert_window
            or self.selected_subject_id not in roster_ids
        )
        if stale:
            self.selected_subject_id = roster_ids[int(self._rng.integers(len(roster_ids)))]
            self.selected_at = now
            logger.info(
                "alert_subject_selected",
                subject_id=self.selected_subject_id,
                roster_size=len(roster_ids),
            )
        return self.selected_subject_id
