"""
Recurrence rules: when a job is allowed to fire.

A rule is an interval of some time unit, optionally pinned to a time of day,
a weekday, and a maximum number of runs.
"""

import re
from dataclasses import dataclass
from datetime import time, timedelta
from enum import Enum, IntEnum
from typing import Optional

from .errors import ConfigurationError, ParseError


class TimeUnit(Enum):
    """Granularity of a rule's interval."""

    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"

    @property
    def duration(self) -> timedelta:
        """Length of one unit. No DST or leap second adjustment."""
        return timedelta(seconds=_UNIT_SECONDS[self])

    @property
    def is_calendar_unit(self) -> bool:
        """Days and weeks fire at most once per calendar date when pinned to a time."""
        return self in (TimeUnit.DAYS, TimeUnit.WEEKS)

    @classmethod
    def parse(cls, text: str) -> "TimeUnit":
        """Accept ``"minute"``, ``"Minutes"``, ``"MINUTES"`` and so on."""
        name = text.strip().lower()
        if not name.endswith("s"):
            name += "s"
        try:
            return cls(name)
        except ValueError:
            raise ParseError(f"Unknown time unit: {text!r}", text) from None


_UNIT_SECONDS = {
    TimeUnit.SECONDS: 1,
    TimeUnit.MINUTES: 60,
    TimeUnit.HOURS: 3600,
    TimeUnit.DAYS: 86400,
    TimeUnit.WEEKS: 604800,
}


class Weekday(IntEnum):
    """Days of the week, numbered like ``datetime.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, text: str) -> "Weekday":
        """Parse a full or three-letter day name, case-insensitive."""
        name = text.strip().lower()
        for day in cls:
            full = day.name.lower()
            if name == full or (len(name) >= 3 and full.startswith(name)):
                return day
        raise ParseError(f"Unknown weekday: {text!r}", text)


_AT_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_at_time(text: str) -> time:
    """
    Parse a time-of-day literal in ``HH:MM`` form.

    The hour may be written with one or two digits (``9:05`` and ``09:05``
    are the same); the minute always has two. Seconds are not accepted.

    Args:
        text: The literal to parse

    Returns:
        A ``datetime.time`` with seconds and microseconds set to zero

    Raises:
        ParseError: If the literal is not a valid time of day
    """
    if not isinstance(text, str):
        raise ParseError(f"Time of day must be a string, got {type(text).__name__}")

    match = _AT_TIME_PATTERN.match(text.strip())
    if not match:
        raise ParseError(f"Invalid time of day {text!r}, expected HH:MM", text)

    return time(hour=int(match.group(1)), minute=int(match.group(2)))


@dataclass(frozen=True)
class RecurrenceRule:
    """When a job may fire. Immutable once built."""

    interval: int
    time_unit: TimeUnit
    at_time: Optional[time] = None
    weekday: Optional[Weekday] = None
    repeat_limit: Optional[int] = None

    def __post_init__(self):
        """Reject values that could never be scheduled."""
        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise ConfigurationError(
                f"Interval must be an integer, got {self.interval!r}"
            )
        if self.interval < 1:
            raise ConfigurationError(
                f"Interval must be positive, got {self.interval}"
            )
        if not isinstance(self.time_unit, TimeUnit):
            raise ConfigurationError(
                f"Time unit must be a TimeUnit, got {self.time_unit!r}"
            )
        if self.at_time is not None:
            if not isinstance(self.at_time, time):
                raise ConfigurationError(
                    f"at_time must be a datetime.time, got {self.at_time!r}"
                )
            if self.at_time.second or self.at_time.microsecond:
                raise ConfigurationError(
                    f"at_time has minute resolution, got {self.at_time.isoformat()}"
                )
            if self.at_time.tzinfo is not None:
                raise ConfigurationError(
                    "at_time is a UTC wall-clock time and takes no tzinfo"
                )
        if self.weekday is not None:
            try:
                weekday = Weekday(self.weekday)
            except ValueError:
                raise ConfigurationError(
                    f"Weekday must be 0-6 or a Weekday, got {self.weekday!r}"
                ) from None
            # frozen dataclass, so coerce through object.__setattr__
            object.__setattr__(self, "weekday", weekday)
        if self.repeat_limit is not None:
            if isinstance(self.repeat_limit, bool) or not isinstance(
                self.repeat_limit, int
            ):
                raise ConfigurationError(
                    f"Repeat limit must be an integer, got {self.repeat_limit!r}"
                )
            if self.repeat_limit < 0:
                raise ConfigurationError(
                    f"Repeat limit cannot be negative, got {self.repeat_limit}"
                )

    @property
    def period(self) -> timedelta:
        """Minimum time between two firings."""
        return self.time_unit.duration * self.interval

    def describe(self) -> str:
        """Human readable form, e.g. ``every 1 weeks on tuesday at 19:24``."""
        parts = [f"every {self.interval} {self.time_unit.value}"]
        if self.weekday is not None:
            parts.append(f"on {self.weekday.name.lower()}")
        if self.at_time is not None:
            parts.append(f"at {self.at_time.strftime('%H:%M')}")
        if self.repeat_limit is not None:
            parts.append(f"(repeat {self.repeat_limit})")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.describe()
