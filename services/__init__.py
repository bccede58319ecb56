"""Services package initialization"""
from .alerts import AdminAlertHandler
from .errors import (
    ConfigurationError,
    ExtractionError,
    FetchError,
    TrackerError,
    TrackerRemovedError,
)
from .fetcher import Fetcher
from .notifier import ChangeNotifier
from .pipeline import CheckOutcome, CheckPipeline
from .scheduler import TrackerScheduler
from .storage import AppStateRepository, TrackerRepository

__all__ = [
    "AdminAlertHandler",
    "AppStateRepository",
    "ChangeNotifier",
    "CheckOutcome",
    "CheckPipeline",
    "ConfigurationError",
    "ExtractionError",
    "FetchError",
    "Fetcher",
    "TrackerError",
    "TrackerRemovedError",
    "TrackerRepository",
    "TrackerScheduler",
]
