"""
Job registry and driving loop.

The runner keeps jobs in registration order and, on every tick, asks the
evaluator about each one with the same ``now``. It is single threaded: a
tick runs every due payload to completion before returning, and nothing
here takes a lock. Wrap the runner in your own lock if several threads need
to register jobs or tick it.
"""

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import psutil

from colored_logger import get_colored_logger

from .builder import JobBuilder
from .errors import ConfigurationError
from .evaluator import (
    Decision,
    RunHistory,
    as_utc,
    elapsed_since_last_run,
    evaluate,
    next_eligible_at,
)
from .rule import RecurrenceRule

logger = get_colored_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _payload_name(payload: Callable[..., Any]) -> str:
    name = getattr(payload, "__name__", None)
    if name is None:
        func = getattr(payload, "func", None)  # bare functools.partial
        name = getattr(func, "__name__", None)
    return name or repr(payload)


def _isoformat(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


class Job:
    """A recurrence rule, its run history and the callable to run."""

    def __init__(
        self,
        rule: RecurrenceRule,
        payload: Callable[[], Any],
        name: Optional[str] = None,
    ):
        if not callable(payload):
            raise ConfigurationError(f"Job payload must be callable, got {payload!r}")

        self.rule = rule
        self.payload = payload
        self.name = name or _payload_name(payload)
        self.history = RunHistory.for_rule(rule)

    @property
    def last_run(self) -> Optional[datetime]:
        return self.history.last_run

    @property
    def remaining_runs(self) -> Optional[int]:
        return self.history.remaining_runs

    @property
    def exhausted(self) -> bool:
        return self.history.exhausted

    @property
    def next_eligible_at(self) -> Optional[datetime]:
        return next_eligible_at(self.rule, self.history)

    def should_run(self, now: datetime) -> bool:
        """True if the job would fire at ``now``. Does not run anything."""
        return evaluate(self.rule, self.history, now).fires

    def run_if_due(self, now: datetime) -> Decision:
        """
        Evaluate the job at ``now`` and run it if it is due.

        History is only updated after the payload returns. If the payload
        raises, the exception propagates and the run is not recorded.

        Args:
            now: Current instant; naive values are read as UTC

        Returns:
            The evaluator's decision
        """
        decision = evaluate(self.rule, self.history, now)
        if not decision.fires:
            if decision is Decision.NOT_ELAPSED:
                logger.trace(
                    "Skipping %s: %s since last run, needs %s",
                    self,
                    elapsed_since_last_run(self.history, now),
                    self.rule.period,
                )
            else:
                logger.trace("Skipping %s: %s", self, decision.value)
            return decision

        logger.debug("Running %s", self)
        self.payload()
        self.history.record_run(now)

        if self.history.exhausted:
            logger.notice(
                "Job '%s' has used all %d of its runs and will not fire again",
                self.name,
                self.rule.repeat_limit,
            )
        return decision

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "rule": self.rule.describe(),
            "last_run": _isoformat(self.last_run),
            "remaining_runs": self.remaining_runs,
            "exhausted": self.exhausted,
            "next_eligible_at": _isoformat(self.next_eligible_at),
        }

    def __repr__(self) -> str:
        return f"<Job {self.name!r} {self.rule.describe()}>"

    def __str__(self) -> str:
        return f"'{self.name}' ({self.rule.describe()})"


class JobRunner:
    """
    Ordered collection of jobs plus the loop that drives them.

    The runner never reads the wall clock inside ``tick``; ``run_pending``
    and ``run_forever`` sample the injected clock once per pass.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize an empty runner.

        Args:
            clock: Zero-argument callable returning the current instant
                (default: ``datetime.now(timezone.utc)``)
        """
        self._jobs: List[Job] = []
        self._clock = clock or _utc_now
        self.tick_count = 0

    @property
    def jobs(self) -> Tuple[Job, ...]:
        return tuple(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.jobs)

    def every(self, interval: int = 1) -> JobBuilder:
        """Start configuring a job that fires every ``interval`` units."""
        return JobBuilder(self, interval)

    def register(
        self,
        rule: RecurrenceRule,
        payload: Callable[[], Any],
        name: Optional[str] = None,
    ) -> Job:
        """
        Add a job built from ``rule`` and ``payload``.

        Returns:
            The new Job, which stays registered for the life of the runner
        """
        job = Job(rule, payload, name=name)
        self._jobs.append(job)
        logger.info("Registered job %s", job)
        return job

    def tick(self, now: datetime) -> List[Job]:
        """
        Evaluate every job against ``now`` and run the due ones.

        Jobs are visited in registration order and all of them see the same
        ``now``. A payload exception stops the tick and propagates; jobs
        after the failing one are not evaluated in this pass.

        Args:
            now: Current instant; naive values are read as UTC

        Returns:
            The jobs that fired, in the order they ran
        """
        now = as_utc(now)
        self.tick_count += 1
        fired: List[Job] = []

        for job in self._jobs:
            try:
                decision = job.run_if_due(now)
            except Exception:
                logger.error(
                    "Job %s failed at %s, run not recorded",
                    job,
                    now.isoformat(),
                    exc_info=True,
                )
                raise
            if decision.fires:
                fired.append(job)

        if fired:
            logger.debug(
                "Tick at %s ran %d of %d jobs",
                now.isoformat(),
                len(fired),
                len(self._jobs),
            )
        return fired

    def run_pending(self) -> List[Job]:
        """Tick once using the runner's clock."""
        return self.tick(self._clock())

    def run_forever(
        self,
        tick_interval_seconds: float = 1.0,
        max_ticks: Optional[int] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> int:
        """
        Drive the runner: tick, sleep, repeat.

        Args:
            tick_interval_seconds: Pause between ticks
            max_ticks: Stop after this many ticks (default: never stop)
            sleep: Sleep function (default: time.sleep)

        Returns:
            Number of ticks run

        Raises:
            ConfigurationError: If the interval or tick limit is invalid
        """
        if tick_interval_seconds <= 0:
            raise ConfigurationError(
                f"Tick interval must be positive, got {tick_interval_seconds}"
            )
        if max_ticks is not None and max_ticks < 0:
            raise ConfigurationError(f"max_ticks cannot be negative, got {max_ticks}")
        sleep = sleep or time.sleep

        logger.info(
            "Job runner started with %d jobs, ticking every %ss",
            len(self._jobs),
            tick_interval_seconds,
        )

        ticks = 0
        try:
            while max_ticks is None or ticks < max_ticks:
                self.run_pending()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                sleep(tick_interval_seconds)
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping job runner")

        logger.info("Job runner stopped after %d ticks", ticks)
        return ticks

    def get_status(self) -> Dict[str, Any]:
        """Summary of the registry and the process it runs in."""
        exhausted = sum(1 for job in self._jobs if job.exhausted)
        return {
            "total_jobs": len(self._jobs),
            "active_jobs": len(self._jobs) - exhausted,
            "exhausted_jobs": exhausted,
            "ticks": self.tick_count,
            "jobs": [job.to_dict() for job in self._jobs],
            "resource_usage": {
                "memory_mb": self._get_memory_usage(),
                "active_threads": threading.active_count(),
            },
        }

    def _get_memory_usage(self) -> int:
        """Resident memory of this process in MB (0 if it can't be read)."""
        try:
            process = psutil.Process()
            return int(process.memory_info().rss / 1024 / 1024)
        except psutil.Error as e:
            logger.debug("Could not read memory usage: %s", e)
            return 0
