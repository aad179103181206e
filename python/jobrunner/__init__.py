"""
In-process periodic job scheduler.

This package provides:
- Recurrence rules (interval, unit, time of day, weekday, repeat limit)
- Due-time evaluation against an injected clock
- A job registry with a chainable builder and a driving loop
- YAML/environment configuration for the loop
"""

from .builder import JobBuilder
from .config import load_config
from .errors import ConfigurationError, ParseError, SchedulerError
from .evaluator import Decision, RunHistory, evaluate
from .registry import Job, JobRunner
from .rule import RecurrenceRule, TimeUnit, Weekday, parse_at_time

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "Decision",
    "Job",
    "JobBuilder",
    "JobRunner",
    "ParseError",
    "RecurrenceRule",
    "RunHistory",
    "SchedulerError",
    "TimeUnit",
    "Weekday",
    "evaluate",
    "load_config",
    "parse_at_time",
]
