from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class ScheduleKind(str, Enum):
    FULL = "full"
    HALF = "half"

    @property
    def expected_hours(self) -> int:
        return 8 if self is ScheduleKind.FULL else 4


class TrackerStatus(str, Enum):
    IDLE = "Idle"
    WORKING = "Working"
    ON_BREAK = "OnBreak"


@dataclass(frozen=True, slots=True)
class Employee:
    employee_id: str
    name: str
    schedule: ScheduleKind

    @property
    def expected_hours(self) -> int:
        return self.schedule.expected_hours


@dataclass(frozen=True, slots=True)
class BreakInterval:
    start: datetime
    end: datetime
    duration_minutes: int

    @property
    def span(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class OpenSession:
    """A session that has not been clocked out yet.

    ``current_break_start`` doubles as the on-break flag so the two can never
    disagree.
    """

    employee_id: str
    employee_name: str
    schedule: ScheduleKind
    expected_hours: int
    date_key: str
    clock_in: datetime
    breaks: tuple[BreakInterval, ...] = ()
    current_break_start: datetime | None = None

    @property
    def on_break(self) -> bool:
        return self.current_break_start is not None


@dataclass(frozen=True, slots=True)
class ClosedSession:
    """A finalized session. Totals are computed once at clock-out and never again."""

    employee_id: str
    employee_name: str
    schedule: ScheduleKind
    expected_hours: int
    date_key: str
    clock_in: datetime
    clock_out: datetime
    breaks: tuple[BreakInterval, ...]
    total_worked_minutes: int
    total_break_minutes: int

    @property
    def on_break(self) -> bool:
        return False


Session = OpenSession | ClosedSession
