"""Periodic due-scan that dispatches tracker checks."""
from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Callable, Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import EngineConfig
from models import Tracker
from services.errors import TrackerRemovedError
from services.pipeline import CheckOutcome, CheckPipeline
from services.storage import TrackerRepository

logger = logging.getLogger(__name__)

TICK_JOB_ID = "tracker-tick"
FAILURE_ALERT_THRESHOLD = 3


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrackerScheduler:
    """Owns the tick job and the set of in-flight tracker checks.

    The scheduler is either running or stopped. Stopping only suppresses new
    dispatch; checks that already started are left to finish.
    """

    def __init__(
        self,
        repository: TrackerRepository,
        pipeline: CheckPipeline,
        config: EngineConfig,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.pipeline = pipeline
        self.config = config
        self.clock = clock
        self._scheduler = scheduler or AsyncIOScheduler()
        self._job: Job | None = None
        self._running = False
        self._tasks: dict[int, asyncio.Task] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._failures: dict[int, int] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> frozenset[int]:
        busy = {tracker_id for tracker_id, lock in self._locks.items() if lock.locked()}
        return frozenset(busy | set(self._tasks))

    def start(self) -> None:
        if self._job is None:
            self._job = self._scheduler.add_job(
                self.tick,
                "interval",
                seconds=self.config.tick_seconds,
                id=TICK_JOB_ID,
                coalesce=True,
                max_instances=1,
            )
        else:
            self._job.resume()
        if not self._scheduler.running:
            self._scheduler.start()
        self._running = True
        logger.info("Tracker scheduler started, tick every %ss", self.config.tick_seconds)

    def stop(self) -> None:
        if self._job is not None:
            self._job.pause()
        self._running = False
        logger.info("Tracker scheduler stopped, %d check(s) still in flight", len(self._tasks))

    def shutdown(self) -> None:
        self._running = False
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._job = None

    async def tick(self, now: datetime | None = None) -> list[int]:
        """Dispatch a check for every due tracker that is not already being checked.

        Returns the ids of dispatched trackers.
        """
        if not self._running:
            logger.debug("Tick skipped: scheduler stopped")
            return []

        try:
            trackers = self.repository.list_trackers()
        except Exception:
            logger.exception("Failed to load trackers, skipping tick")
            return []

        current = now or self.clock()
        busy = self.in_flight
        due = [
            tracker
            for tracker in trackers
            if tracker.id is not None and tracker.id not in busy and tracker.is_due(current)
        ]
        self._forget_missing({tracker.id for tracker in trackers})

        dispatched: list[int] = []
        for index, tracker in enumerate(due):
            delay = index * self.config.stagger_seconds
            task = asyncio.create_task(
                self._run_scheduled(tracker, delay),
                name=f"tracker-check-{tracker.id}",
            )
            self._tasks[tracker.id] = task
            dispatched.append(tracker.id)

        if dispatched:
            logger.info("Tick: %d of %d tracker(s) due", len(dispatched), len(trackers))
        else:
            logger.debug("Tick: nothing due among %d tracker(s)", len(trackers))
        return dispatched

    async def run_check_now(self, tracker_id: int) -> Tracker:
        """Check a tracker immediately, waiting for any check already in flight.

        Raises ValueError for an unknown id and the check's TrackerError on failure.
        """
        async with self._lock_for(tracker_id):
            tracker = self.repository.get_tracker(tracker_id)
            logger.info("Manual check requested for tracker %s", tracker_id)
            return await self.pipeline.run_check_now(tracker)

    async def wait_idle(self) -> None:
        """Wait for all dispatched checks to finish."""
        while self._tasks:
            pending = list(self._tasks.items())
            await asyncio.gather(*(task for _, task in pending), return_exceptions=True)
            # tasks cancelled before their first step never reach their finally block
            for tracker_id, task in pending:
                if self._tasks.get(tracker_id) is task:
                    del self._tasks[tracker_id]

    async def _run_scheduled(self, tracker: Tracker, delay: float) -> None:
        try:
            if delay:
                await asyncio.sleep(delay)
            async with self._lock_for(tracker.id):
                try:
                    current = self.repository.get_tracker(tracker.id)
                except ValueError:
                    logger.info("Tracker %s removed before its check started", tracker.id)
                    return
                outcome = await self.pipeline.run(current)
            self._record(outcome)
        except asyncio.CancelledError:
            logger.info("Scheduled check for tracker %s cancelled", tracker.id)
            raise
        except Exception:
            logger.exception(
                "Unexpected error while checking tracker %s",
                tracker.id,
                extra={"tracker_id": tracker.id},
            )
        finally:
            self._tasks.pop(tracker.id, None)

    def _record(self, outcome: CheckOutcome) -> None:
        tracker_id = outcome.tracker.id
        if outcome.ok:
            if self._failures.pop(tracker_id, 0) >= FAILURE_ALERT_THRESHOLD:
                logger.info("Tracker %s recovered after repeated failures", tracker_id)
            return
        if isinstance(outcome.error, TrackerRemovedError):
            self._failures.pop(tracker_id, None)
            return

        count = self._failures.get(tracker_id, 0) + 1
        self._failures[tracker_id] = count
        if count == FAILURE_ALERT_THRESHOLD:
            logger.error(
                "Tracker %s (%s) failed %d checks in a row: %s",
                tracker_id,
                outcome.tracker.url,
                count,
                outcome.error,
                extra={"tracker_id": tracker_id},
            )

    def _lock_for(self, tracker_id: int) -> asyncio.Lock:
        lock = self._locks.get(tracker_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tracker_id] = lock
        return lock

    def _forget_missing(self, known_ids: set[int]) -> None:
        for tracker_id in list(self._locks):
            if tracker_id not in known_ids and not self._locks[tracker_id].locked():
                del self._locks[tracker_id]
        for tracker_id in list(self._failures):
            if tracker_id not in known_ids:
                del self._failures[tracker_id]


__all__ = ["FAILURE_ALERT_THRESHOLD", "TICK_JOB_ID", "TrackerScheduler"]
