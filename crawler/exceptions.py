"""
Exception hierarchy for the monitoring pipeline.
"""

from enum import Enum
from typing import Optional


class MonitorError(Exception):
    """Base class for pipeline errors."""


class FetchErrorKind(str, Enum):
    """Why a fetch failed."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    NON_SUCCESS_STATUS = "non_success_status"


class FetchError(MonitorError):
    """A page could not be retrieved. Non-fatal to a run."""

    def __init__(self, kind: FetchErrorKind, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{kind.value}: {message} ({url})")
        self.kind = kind
        self.url = url
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in (FetchErrorKind.NETWORK, FetchErrorKind.TIMEOUT)


class PersistenceError(MonitorError):
    """The store rejected or failed an operation. Aborts the current target's cycle."""


class StaleTargetError(PersistenceError):
    """The target pointer moved underneath this cycle (concurrent check)."""


class TargetNotFoundError(MonitorError):
    """No monitored target with the requested id."""

    def __init__(self, target_id: str):
        super().__init__(f"Target not found: {target_id}")
        self.target_id = target_id


class CrawlInProgressError(MonitorError):
    """A full crawl run is already executing in this process."""
