"""Per-tracker check orchestration: fetch, extract, classify, persist."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable

from models import Tracker
from services.classifier import classify
from services.errors import TrackerError, TrackerRemovedError
from services.extractor import DEFAULT_MAX_LENGTH, extract
from services.fetcher import Fetcher
from services.storage import TrackerRepository

logger = logging.getLogger(__name__)


class CheckStage(str, Enum):
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    DONE = "done"
    ERRORED = "errored"


@dataclass(slots=True)
class CheckOutcome:
    """Result of one pipeline run for a single tracker."""

    tracker: Tracker
    stage: CheckStage
    value: str | None = None
    error: TrackerError | None = None
    failed_stage: CheckStage | None = None

    @property
    def ok(self) -> bool:
        return self.stage is CheckStage.DONE


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CheckPipeline:
    """Runs one check for a tracker and writes the observation back to the store."""

    def __init__(
        self,
        fetcher: Fetcher,
        repository: TrackerRepository,
        max_value_length: int = DEFAULT_MAX_LENGTH,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.fetcher = fetcher
        self.repository = repository
        self.max_value_length = max_value_length
        self.clock = clock

    async def run(self, tracker: Tracker) -> CheckOutcome:
        """Check ``tracker`` once. Failures come back on the outcome, never raised."""
        stage = CheckStage.FETCHING
        try:
            raw = await self.fetcher.fetch(tracker.url, tracker.request_body)

            stage = CheckStage.EXTRACTING
            value = extract(raw, tracker.selector, self.max_value_length)

            stage = CheckStage.CLASSIFYING
            status = classify(tracker.last_value, value, tracker.trigger_word)

            stage = CheckStage.PERSISTING
            now = self.clock()
            try:
                updated = self.repository.update_tracker(
                    tracker.id,
                    {
                        "last_value": value,
                        "last_checked": now,
                        "status": status,
                        "updated_at": now,
                    },
                )
            except ValueError as exc:
                raise TrackerRemovedError(tracker.id) from exc
        except asyncio.CancelledError:
            logger.info("Check for tracker %s cancelled", tracker.id)
            raise
        except TrackerRemovedError as exc:
            logger.info("Tracker %s removed while being checked, result dropped", tracker.id)
            return CheckOutcome(
                tracker=tracker,
                stage=CheckStage.ERRORED,
                error=exc,
                failed_stage=stage,
            )
        except TrackerError as exc:
            logger.warning(
                "Check for tracker %s (%s) failed while %s: %s",
                tracker.id,
                tracker.url,
                stage.value,
                exc,
            )
            return CheckOutcome(
                tracker=tracker,
                stage=CheckStage.ERRORED,
                error=exc,
                failed_stage=stage,
            )

        if status != tracker.status or value != tracker.last_value:
            logger.info(
                "Tracker %s (%s): %s -> %s, value %r",
                tracker.id,
                tracker.name,
                tracker.status.value,
                status.value,
                value,
            )
        else:
            logger.debug("Tracker %s unchanged (%r)", tracker.id, value)
        return CheckOutcome(tracker=updated, stage=CheckStage.DONE, value=value)

    async def run_check_now(self, tracker: Tracker) -> Tracker:
        """Run a check regardless of schedule and return the updated tracker.

        Raises the underlying FetchError or ExtractionError when the check fails.
        """
        outcome = await self.run(tracker)
        if outcome.error is not None:
            raise outcome.error
        return outcome.tracker


__all__ = ["CheckOutcome", "CheckPipeline", "CheckStage"]
