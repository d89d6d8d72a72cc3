"""
Clock
Wall-clock source used for job timestamps, handle TTLs and cost windows.
Timestamps are naive UTC, matching what the database columns store.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current naive-UTC time."""


class SystemClock(Clock):
    """Real wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
