"""Exceptions raised by jobrunner."""


class SchedulerError(Exception):
    """Base class for every error jobrunner raises on its own."""


class ConfigurationError(SchedulerError, ValueError):
    """A job or the runner was configured in a way that can't be scheduled."""


class ParseError(SchedulerError, ValueError):
    """A literal (time of day, weekday name, ...) could not be parsed."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text
