"""
Expiry Sweeper — background task that expires overdue proposals.

Runs on a fixed interval, or on a cron schedule when one is configured.
Lazy expiry on access still applies; both paths go through the per-action lock.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from croniter import croniter

from multisig_kernel.coordinator.proposals import ProposalCoordinator

logger = logging.getLogger(__name__)


class ExpirySweeper:

    def __init__(self, coordinator: ProposalCoordinator):
        self.coordinator = coordinator
        self.config = coordinator.config
        self._running = False
        self.sweeps = 0

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    def next_delay(self, current_time: Optional[datetime] = None) -> float:
        """Seconds until the next sweep."""
        schedule = self.config.sweep_schedule
        if not schedule:
            return self.config.sweep_interval_seconds
        current_time = current_time or datetime.utcnow()
        try:
            next_fire = croniter(schedule, current_time).get_next(datetime)
        except (ValueError, KeyError) as e:
            logger.warning(f"Invalid sweep schedule {schedule!r}, using interval: {e}")
            return self.config.sweep_interval_seconds
        return max(0.0, (next_fire - current_time).total_seconds())

    def sweep_once(self, now: Optional[datetime] = None) -> list:
        self.sweeps += 1
        return self.coordinator.sweep_expired(now)

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Sweep until the stop event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                self.sweep_once()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.next_delay())
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
