"""
Clock abstraction. All expiry and threshold logic reads "now" through a Clock
so tests can pin time.

Timestamps are naive UTC datetimes, matching how they are stored.
"""

from datetime import date, datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


system_clock = SystemClock()
