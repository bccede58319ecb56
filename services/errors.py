"""Exceptions raised by the tracker check engine."""
from __future__ import annotations


class TrackerError(Exception):
    """Base class for per-tracker failures that never abort the scheduler."""


class FetchError(TrackerError):
    """Network failure, non-2xx response or timeout while fetching a tracker URL."""

    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status = status
        if status is not None:
            message = f"HTTP {status} fetching {url}: {reason}"
        else:
            message = f"Failed to fetch {url}: {reason}"
        super().__init__(message)


class ExtractionError(TrackerError):
    """Raw content could not be parsed or the locator matched nothing."""

    def __init__(self, reason: str, selector: str | None = None) -> None:
        self.reason = reason
        self.selector = selector
        if selector:
            super().__init__(f"{reason} (selector: {selector})")
        else:
            super().__init__(reason)


class ConfigurationError(TrackerError, ValueError):
    """Invalid tracker definition, rejected when a tracker is created or edited."""


class TrackerRemovedError(TrackerError):
    """The tracker was deleted while its check was running."""

    def __init__(self, tracker_id: int | None) -> None:
        self.tracker_id = tracker_id
        super().__init__(f"Tracker {tracker_id} was removed during the check")


__all__ = [
    "ConfigurationError",
    "ExtractionError",
    "FetchError",
    "TrackerError",
    "TrackerRemovedError",
]
