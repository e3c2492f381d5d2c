from __future__ import annotations

from datetime import datetime


class TimeClockError(Exception):
    """Base type for every error raised by the time-accounting core."""


class PreconditionFailed(TimeClockError):
    """The command does not apply to the current session state."""

    def __init__(self, message: str = "Command not allowed in the current state.") -> None:
        super().__init__(message)


class InvalidTimeRange(TimeClockError):
    """An end instant precedes its paired start instant."""

    def __init__(self, start: datetime, end: datetime, what: str = "interval") -> None:
        super().__init__(f"Invalid {what}: end {end.isoformat()} precedes start {start.isoformat()}")
        self.start = start
        self.end = end


class PersistenceUnavailable(TimeClockError):
    """The storage collaborator failed to load or save state."""

    def __init__(self, message: str = "Persistent storage is unavailable.") -> None:
        super().__init__(message)
