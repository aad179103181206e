"""
Console logging for jobrunner.

Adds a handful of extra levels on top of the standard ones so the scheduler
can be chatty about skip decisions (TRACE) without drowning out fires and
exhaustion notices.
"""

import logging
import sys
from typing import Optional, TextIO, Union

TRACE_LEVEL = 5
PROGRESS_LEVEL = 22
SUCCESS_LEVEL = 25
NOTICE_LEVEL = 35
FAILURE_LEVEL = 45

_CUSTOM_LEVELS = {
    TRACE_LEVEL: "TRACE",
    PROGRESS_LEVEL: "PROGRESS",
    SUCCESS_LEVEL: "SUCCESS",
    NOTICE_LEVEL: "NOTICE",
    FAILURE_LEVEL: "FAILURE",
}

for _level, _name in _CUSTOM_LEVELS.items():
    logging.addLevelName(_level, _name)

DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Wraps each formatted record in the ANSI colour of its level."""

    COLORS = {
        "TRACE": "\033[90m",  # grey
        "DEBUG": "\033[36m",  # cyan
        "INFO": "\033[32m",  # green
        "PROGRESS": "\033[94m",  # bright blue
        "SUCCESS": "\033[92m",  # bright green
        "WARNING": "\033[33m",  # yellow
        "NOTICE": "\033[96m",  # bright cyan
        "ERROR": "\033[31m",  # red
        "FAILURE": "\033[91m",  # bright red
        "CRITICAL": "\033[35m",  # magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(fmt or DEFAULT_FORMAT, datefmt or DEFAULT_DATEFMT)
        self._stream = stream

    def _use_color(self) -> bool:
        stream = self._stream if self._stream is not None else sys.stderr
        isatty = getattr(stream, "isatty", None)
        return bool(isatty and isatty())

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not self._use_color():
            return message

        color = self.COLORS.get(record.levelname)
        if color is None:
            return message
        return f"{color}{message}{self.RESET}"


def resolve_level(level: Union[int, str]) -> int:
    """
    Turn a level name such as ``"trace"`` or ``"INFO"`` into its number.

    Raises:
        ValueError: If the name is not a known level
    """
    if isinstance(level, int):
        return level

    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_colored_logging(
    level: Union[int, str] = logging.INFO, stream: Optional[TextIO] = None
) -> None:
    """
    Configure the root logger with a single coloured console handler.

    Args:
        level: Logging level number or name (default: INFO)
        stream: Output stream (default: stderr)
    """
    stream = stream if stream is not None else sys.stderr

    root_logger = logging.getLogger()
    root_logger.setLevel(resolve_level(level))

    # Replace whatever was installed before so repeated calls don't duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(ColoredFormatter(stream=stream))
    root_logger.addHandler(console_handler)


class EnhancedLogger:
    """Logger wrapper with methods for the custom levels."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def trace(self, msg, *args, **kwargs):
        """Per-tick detail, e.g. why a job was skipped."""
        self._logger.log(TRACE_LEVEL, msg, *args, **kwargs)

    def progress(self, msg, *args, **kwargs):
        self._logger.log(PROGRESS_LEVEL, msg, *args, **kwargs)

    def success(self, msg, *args, **kwargs):
        self._logger.log(SUCCESS_LEVEL, msg, *args, **kwargs)

    def notice(self, msg, *args, **kwargs):
        """Something worth seeing once, e.g. a job running out of repeats."""
        self._logger.log(NOTICE_LEVEL, msg, *args, **kwargs)

    def failure(self, msg, *args, **kwargs):
        self._logger.log(FAILURE_LEVEL, msg, *args, **kwargs)

    # debug/info/warning/error/critical/isEnabledFor/... come from the wrapped logger
    def __getattr__(self, name):
        return getattr(self._logger, name)


def get_colored_logger(name: str) -> EnhancedLogger:
    """
    Get a logger with the custom level methods.

    Args:
        name: Logger name (typically __name__)

    Returns:
        EnhancedLogger wrapping ``logging.getLogger(name)``
    """
    return EnhancedLogger(logging.getLogger(name))
