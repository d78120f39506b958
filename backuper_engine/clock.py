"""
Clock abstractions for deterministic behavior.

Notes
-----
Engine code does not read wall-clock time directly. Backup timestamps, archive
identifiers and due-checks all take a Clock, which keeps tests deterministic
and makes identifier collisions reproducible.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """A source of time for deterministic behavior."""

    def now(self) -> datetime:
        """
        Return the current time.

        Returns
        -------
        datetime
            A timezone-aware datetime.
        """
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Clock that returns the current system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Clock that always returns a fixed time (useful for tests)."""

    fixed_time: datetime

    def now(self) -> datetime:
        """
        Return the fixed time.

        Naive values are interpreted as UTC.
        """
        if self.fixed_time.tzinfo is None:
            return self.fixed_time.replace(tzinfo=timezone.utc)
        return self.fixed_time


def backup_timestamp(clock: Clock) -> datetime:
    """
    Return the clock's current time as a whole-second UTC timestamp.

    Parameters
    ----------
    clock:
        Time source.

    Returns
    -------
    datetime
        Timezone-aware UTC datetime with microseconds dropped.

    Notes
    -----
    Flooring never moves a backup time past a modification it has not seen, so
    the incremental inclusion test (mtime strictly after the previous backup)
    can only include too much, never too little.
    """
    current = clock.now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(timezone.utc).replace(microsecond=0)
