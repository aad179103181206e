"""
Chainable job configuration.

    runner.every(3).seconds().repeat(3).do(send_report)
    runner.every().week().tuesday().at("19:24").do(backup, "/srv")

Nothing is registered until ``do`` is called, and a builder can only be
used once.
"""

import functools
from datetime import time
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from colored_logger import get_colored_logger

from .errors import ConfigurationError
from .rule import RecurrenceRule, TimeUnit, Weekday, parse_at_time

if TYPE_CHECKING:
    from .registry import Job, JobRunner

logger = get_colored_logger(__name__)


class JobBuilder:
    """Collects a job's rule piece by piece, then registers it with ``do``."""

    def __init__(self, runner: "JobRunner", interval: int = 1):
        if isinstance(interval, bool) or not isinstance(interval, int):
            raise ConfigurationError(f"Interval must be an integer, got {interval!r}")
        if interval < 1:
            raise ConfigurationError(f"Interval must be positive, got {interval}")

        self._runner = runner
        self.interval = interval
        self.time_unit: Optional[TimeUnit] = None
        self.at_time: Optional[time] = None
        self.weekday: Optional[Weekday] = None
        self.repeat_limit: Optional[int] = None
        self._consumed = False

    def _unit(self, unit: TimeUnit) -> "JobBuilder":
        if self.time_unit is not None and self.time_unit is not unit:
            raise ConfigurationError(
                f"Time unit already set to {self.time_unit.value}, "
                f"cannot also use {unit.value}"
            )
        self.time_unit = unit
        return self

    def seconds(self) -> "JobBuilder":
        return self._unit(TimeUnit.SECONDS)

    def minutes(self) -> "JobBuilder":
        return self._unit(TimeUnit.MINUTES)

    def hours(self) -> "JobBuilder":
        return self._unit(TimeUnit.HOURS)

    def days(self) -> "JobBuilder":
        return self._unit(TimeUnit.DAYS)

    def weeks(self) -> "JobBuilder":
        return self._unit(TimeUnit.WEEKS)

    # Singular spellings read better with the default interval: every().day()
    second = seconds
    minute = minutes
    hour = hours
    day = days
    week = weeks

    def at(self, time_str: str) -> "JobBuilder":
        """
        Only fire at or after ``time_str`` (``HH:MM``, UTC) on a firing day.

        Raises:
            ParseError: If ``time_str`` is not a valid time of day
        """
        self.at_time = parse_at_time(time_str)
        return self

    def on(self, weekday: Union[Weekday, int, str]) -> "JobBuilder":
        """Restrict the job to one day of the week."""
        if isinstance(weekday, str):
            day = Weekday.parse(weekday)
        else:
            try:
                day = Weekday(weekday)
            except ValueError:
                raise ConfigurationError(f"Invalid weekday: {weekday!r}") from None

        if self.weekday is not None and self.weekday is not day:
            raise ConfigurationError(
                f"Weekday already set to {self.weekday.name.lower()}, "
                f"a job can only run on one weekday"
            )
        self.weekday = day
        return self

    def monday(self) -> "JobBuilder":
        return self.on(Weekday.MONDAY)

    def tuesday(self) -> "JobBuilder":
        return self.on(Weekday.TUESDAY)

    def wednesday(self) -> "JobBuilder":
        return self.on(Weekday.WEDNESDAY)

    def thursday(self) -> "JobBuilder":
        return self.on(Weekday.THURSDAY)

    def friday(self) -> "JobBuilder":
        return self.on(Weekday.FRIDAY)

    def saturday(self) -> "JobBuilder":
        return self.on(Weekday.SATURDAY)

    def sunday(self) -> "JobBuilder":
        return self.on(Weekday.SUNDAY)

    def repeat(self, count: int) -> "JobBuilder":
        """Fire at most ``count`` times in total."""
        if isinstance(count, bool) or not isinstance(count, int):
            raise ConfigurationError(f"Repeat count must be an integer, got {count!r}")
        if count < 0:
            raise ConfigurationError(f"Repeat count cannot be negative, got {count}")
        self.repeat_limit = count
        return self

    def build_rule(self) -> RecurrenceRule:
        """
        Freeze the collected settings into a rule without registering anything.

        Raises:
            ConfigurationError: If no time unit was selected
        """
        if self.time_unit is None:
            raise ConfigurationError(
                f"No time unit selected for every({self.interval}), "
                "call seconds(), minutes(), hours(), days() or weeks() first"
            )

        rule = RecurrenceRule(
            interval=self.interval,
            time_unit=self.time_unit,
            at_time=self.at_time,
            weekday=self.weekday,
            repeat_limit=self.repeat_limit,
        )
        logger.debug("Built rule: %s", rule)
        return rule

    def do(
        self, job_func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> "Job":
        """
        Register the job with the runner.

        Extra arguments are bound to ``job_func`` and passed on every run.

        Args:
            job_func: The payload to call when the job fires

        Returns:
            The registered Job

        Raises:
            ConfigurationError: If the builder was already used, no time unit
                was selected, or ``job_func`` is not callable
        """
        if self._consumed:
            raise ConfigurationError("This job builder has already been used")
        if not callable(job_func):
            raise ConfigurationError(f"Job payload must be callable, got {job_func!r}")

        rule = self.build_rule()

        payload = job_func
        if args or kwargs:
            payload = functools.partial(job_func, *args, **kwargs)
            functools.update_wrapper(payload, job_func)

        self._consumed = True
        return self._runner.register(rule, payload)
