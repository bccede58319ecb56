"""Data model for monitored trackers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

DEFAULT_CHECK_INTERVAL = 15


class TrackerStatus(str, Enum):
    NEW = "new"
    STABLE = "stable"
    CHANGED = "changed"
    MATCH = "match"
    NO_MATCH = "no-match"


@dataclass(slots=True)
class Tracker:
    """A monitored (url, selector) pair with its own schedule and last observation."""

    id: int | None
    name: str
    url: str
    selector: str
    request_body: str | None = None
    trigger_word: str | None = None
    check_interval: int = DEFAULT_CHECK_INTERVAL
    last_value: str | None = None
    last_checked: datetime | None = None
    status: TrackerStatus = TrackerStatus.NEW
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, TrackerStatus):
            self.status = TrackerStatus(self.status)
        if self.check_interval is None:
            self.check_interval = DEFAULT_CHECK_INTERVAL
        if self.check_interval < 1:
            raise ValueError("check_interval must be at least 1 minute")

    @property
    def method(self) -> str:
        return "POST" if self.request_body and self.request_body.strip() else "GET"

    @property
    def has_trigger(self) -> bool:
        return bool(self.trigger_word and self.trigger_word.strip())

    def is_due(self, now: datetime | None = None) -> bool:
        """Return True once check_interval minutes have elapsed since the last check.

        Trackers that were never checked, or have no value yet, are always due.
        """
        if self.last_checked is None or self.last_value is None:
            return True
        current = now or datetime.now(UTC)
        return current - self.last_checked >= timedelta(minutes=self.check_interval)
