"""Models package initialization"""
from .tracker import DEFAULT_CHECK_INTERVAL, Tracker, TrackerStatus

__all__ = ['DEFAULT_CHECK_INTERVAL', 'Tracker', 'TrackerStatus']
