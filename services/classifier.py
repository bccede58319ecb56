"""Status classification for freshly extracted tracker values."""
from __future__ import annotations

from models import TrackerStatus


def classify(
    previous: str | None,
    new: str,
    trigger_word: str | None = None,
) -> TrackerStatus:
    """Map an observation to a tracker status.

    A configured trigger word switches to keyword mode and the previous value is
    ignored. Without one, the first captured value becomes the stable baseline and
    later values are compared verbatim.
    """
    keyword = (trigger_word or "").strip()
    if keyword:
        if keyword.casefold() in new.casefold():
            return TrackerStatus.MATCH
        return TrackerStatus.NO_MATCH

    if previous is None:
        return TrackerStatus.STABLE
    if new != previous:
        return TrackerStatus.CHANGED
    return TrackerStatus.STABLE


__all__ = ["classify"]
