"""
Scheduling loop.

Drives the assignment engine from timers and change notifications:

- every `refresh_interval` seconds, and on every trip/driver change message,
  the state snapshot (unscheduled trips, roster, workload, performance) is
  reloaded;
- while auto-schedule is enabled, every `auto_schedule_interval` seconds all
  unscheduled trips are batch-assigned.

Timer-driven runs that fire while a batch is still in flight are skipped;
manual runs wait for it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from backend.app.core.clock import utcnow
from backend.app.core.observability import new_correlation_id
from backend.app.services.assignment_engine import AssignmentEngine, AssignmentResult
from backend.app.services.driver_performance import DriverPerformance
from backend.app.services.driver_scoring import ScoringWeights

logger = logging.getLogger(__name__)


@dataclass
class SchedulerSnapshot:
    unscheduled_trips: list = field(default_factory=list)
    drivers: list = field(default_factory=list)
    workloads: Dict[int, int] = field(default_factory=dict)
    performance: Dict[int, DriverPerformance] = field(default_factory=dict)
    refreshed_at: Optional[datetime] = None


class SchedulingLoop:

    def __init__(
        self,
        engine: AssignmentEngine,
        trip_repository,
        change_feed=None,
        weights: Optional[ScoringWeights] = None,
        auto_schedule_interval: float = 30.0,
        refresh_interval: float = 10.0,
        unscheduled_limit: int = 50,
    ):
        self.engine = engine
        self.trip_repository = trip_repository
        self.change_feed = change_feed
        self.weights = weights or ScoringWeights()
        self.auto_schedule_interval = auto_schedule_interval
        self.refresh_interval = refresh_interval
        self.unscheduled_limit = unscheduled_limit

        # Both toggles start off
        self.ai_enhanced = False
        self.auto_schedule_enabled = False

        self.snapshot = SchedulerSnapshot()
        self.last_results: List[AssignmentResult] = []

        self._run_lock = asyncio.Lock()
        self._running = False
        self._refresh_task: Optional[asyncio.Task] = None
        self._auto_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None

    # Settings

    def set_weights(self, weights: ScoringWeights) -> None:
        self.weights = weights
        logger.info("Scoring weights updated", extra={"weights": weights.model_dump()})

    def reset_weights(self) -> None:
        self.set_weights(ScoringWeights())

    def set_ai_enhanced(self, enabled: bool) -> None:
        self.ai_enhanced = enabled

    def set_auto_schedule(self, enabled: bool) -> None:
        """
        Turn periodic batch assignment on or off.

        Turning it off only prevents future ticks; a batch already running
        finishes.
        """
        self.auto_schedule_enabled = enabled
        logger.info("Auto-schedule toggled", extra={"enabled": enabled})
        if enabled and self._running and (self._auto_task is None or self._auto_task.done()):
            self._auto_task = asyncio.create_task(self._auto_schedule_loop())

    @property
    def batch_in_progress(self) -> bool:
        return self._run_lock.locked()

    # Work

    async def refresh(self) -> SchedulerSnapshot:
        """Reload unscheduled trips, roster, workload and performance."""
        trips = await self.trip_repository.list_unscheduled(self.unscheduled_limit)
        inputs = await self.engine.load_scoring_inputs()
        self.snapshot = SchedulerSnapshot(
            unscheduled_trips=trips,
            drivers=inputs.drivers,
            workloads=inputs.workloads,
            performance=inputs.performance,
            refreshed_at=utcnow(),
        )
        return self.snapshot

    async def run_auto_schedule(self, actor_id: Optional[int] = None, coalesce: bool = False) -> List[AssignmentResult]:
        """
        Batch-assign the current unscheduled trips.

        Args:
            actor_id: Who triggered the run (None for timer runs)
            coalesce: Skip instead of waiting when a batch is in flight

        Returns:
            Per-trip results; empty when there was nothing to do or the run
            was coalesced
        """
        if coalesce and self._run_lock.locked():
            logger.info("Auto-schedule tick skipped, batch still running")
            return []

        async with self._run_lock:
            trips = await self.trip_repository.list_unscheduled(self.unscheduled_limit)
            results = await self.engine.auto_schedule_all(
                trips, self.weights, actor_id=actor_id, explain=self.ai_enhanced
            )
            if results:
                self.last_results = results

        await self.refresh()
        return results

    async def assign_trip(self, trip, actor_id: Optional[int] = None) -> AssignmentResult:
        result = await self.engine.assign_single_trip(
            trip, self.weights, actor_id=actor_id, explain=self.ai_enhanced
        )
        await self.refresh()
        return result

    async def undo_last_batch(self, batch_timestamp: Optional[datetime] = None):
        result = await self.engine.undo_last_batch(batch_timestamp)
        self.last_results = [
            AssignmentResult(success=True, trip_id=None, message=result.message)
        ]
        await self.refresh()
        return result

    async def handle_change(self, channel: str) -> None:
        logger.debug("Change notification received", extra={"channel": channel})
        await self.refresh()

    # Lifecycle

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        await self._guarded(self.engine.restore_undo_state, "restore undo state")
        await self._guarded(self.refresh, "initial refresh")

        self._refresh_task = asyncio.create_task(self._refresh_loop())
        if self.change_feed is not None:
            self._listener_task = asyncio.create_task(self.change_feed.listen(self.handle_change))
        if self.auto_schedule_enabled:
            self._auto_task = asyncio.create_task(self._auto_schedule_loop())
        logger.info("Scheduling loop started")

    async def stop(self) -> None:
        self._running = False
        tasks = [t for t in (self._refresh_task, self._auto_task, self._listener_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._refresh_task = self._auto_task = self._listener_task = None
        logger.info("Scheduling loop stopped")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self._guarded(self.refresh, "periodic refresh")

    async def _auto_schedule_loop(self) -> None:
        while self.auto_schedule_enabled:
            await asyncio.sleep(self.auto_schedule_interval)
            if not self.auto_schedule_enabled:
                break
            new_correlation_id("auto-")
            await self._guarded(lambda: self.run_auto_schedule(coalesce=True), "auto-schedule tick")

    async def _guarded(self, func, what: str):
        # Background ticks log failures and keep the loop alive
        try:
            return await func()
        except Exception:
            logger.exception("Scheduler %s failed", what)
            return None
