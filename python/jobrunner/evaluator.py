"""
Due-time evaluation.

``evaluate`` looks at a rule, what a job has done so far, and the current
instant, and says whether the job should fire now. It never touches the
history itself; the registry calls ``RunHistory.record_run`` once the
payload has returned.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from .errors import ConfigurationError
from .rule import RecurrenceRule


class Decision(Enum):
    """Outcome of one evaluation. Everything except FIRE is a skip."""

    FIRE = "fire"
    EXHAUSTED = "exhausted"
    WRONG_WEEKDAY = "wrong_weekday"
    NOT_ELAPSED = "not_elapsed"
    BEFORE_AT_TIME = "before_at_time"
    SAME_DAY = "same_day"

    @property
    def fires(self) -> bool:
        return self is Decision.FIRE


def as_utc(moment: datetime) -> datetime:
    """
    Normalise a timestamp to an aware UTC datetime.

    Naive datetimes are taken to already be in UTC.
    """
    if moment.tzinfo is None or moment.utcoffset() is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass
class RunHistory:
    """What a job has done so far. Owned by exactly one job."""

    last_run: Optional[datetime] = None
    remaining_runs: Optional[int] = None

    def __post_init__(self):
        if self.last_run is not None:
            self.last_run = as_utc(self.last_run)
        if self.remaining_runs is not None and self.remaining_runs < 0:
            raise ConfigurationError(
                f"remaining_runs cannot be negative, got {self.remaining_runs}"
            )

    @classmethod
    def for_rule(cls, rule: RecurrenceRule) -> "RunHistory":
        """Empty history for a freshly registered job."""
        return cls(last_run=None, remaining_runs=rule.repeat_limit)

    @property
    def exhausted(self) -> bool:
        return self.remaining_runs == 0

    def record_run(self, now: datetime) -> None:
        """Book a successful firing at ``now``."""
        self.last_run = as_utc(now)
        if self.remaining_runs is not None:
            self.remaining_runs -= 1


def evaluate(rule: RecurrenceRule, history: RunHistory, now: datetime) -> Decision:
    """
    Decide whether a job is due at ``now``.

    Gates are checked in a fixed order and the first one that fails wins:

    1. exhausted: no runs left, forever
    2. weekday: ``now`` is not the rule's weekday
    3. interval: less than ``rule.period`` since the last run (the first
       evaluation of a job always passes)
    4. time of day: before ``rule.at_time``, or a day/week job that already
       fired on this calendar date

    Args:
        rule: The job's recurrence rule
        history: The job's run history (not modified)
        now: Current instant; naive values are read as UTC

    Returns:
        Decision.FIRE or the reason for skipping
    """
    if history.exhausted:
        return Decision.EXHAUSTED

    now = as_utc(now)

    if rule.weekday is not None and now.weekday() != rule.weekday:
        return Decision.WRONG_WEEKDAY

    last_run = history.last_run
    if last_run is not None and now - last_run < rule.period:
        return Decision.NOT_ELAPSED

    if rule.at_time is not None:
        if now.time() < rule.at_time:
            return Decision.BEFORE_AT_TIME

        # Only days and weeks get the once-per-date guard
        if (
            last_run is not None
            and rule.time_unit.is_calendar_unit
            and last_run.date() == now.date()
        ):
            return Decision.SAME_DAY

    return Decision.FIRE


def next_eligible_at(
    rule: RecurrenceRule, history: RunHistory
) -> Optional[datetime]:
    """
    Instant at which the interval gate opens again.

    Weekday and time-of-day gates are ignored, so the job may still skip at
    that instant. Returns None for a job that never ran (it is eligible
    straight away) or that has no runs left.
    """
    if history.exhausted or history.last_run is None:
        return None
    return history.last_run + rule.period


def elapsed_since_last_run(history: RunHistory, now: datetime) -> Optional[timedelta]:
    """Time since the last run, or None if the job never ran."""
    if history.last_run is None:
        return None
    return as_utc(now) - history.last_run
