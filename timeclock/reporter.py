from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo

from .models import BreakInterval, ClosedSession, Employee, Session, TrackerStatus
from .tracker import (
    SessionTracker,
    calculate_break_time,
    local_day_key,
    project_elapsed,
    round_minutes,
    to_milliseconds,
    utc_now,
)

STATUS_LABELS = {
    TrackerStatus.IDLE: "Off duty",
    TrackerStatus.WORKING: "Working",
    TrackerStatus.ON_BREAK: "On break",
}


def format_duration(milliseconds: int) -> str:
    """Render a duration as HH:MM:SS; negative values clamp to zero."""
    safe_seconds = max(0, int(milliseconds)) // 1000
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def format_minutes(total_minutes: int) -> str:
    safe_minutes = max(0, int(total_minutes))
    hours, minutes = divmod(safe_minutes, 60)
    return f"{hours:02}:{minutes:02}"


@dataclass(frozen=True, slots=True)
class SessionSummary:
    employee_id: str
    employee_name: str
    date_key: str
    clock_in: datetime
    clock_out: datetime | None
    break_minutes: int
    worked_minutes: int
    breaks: tuple[BreakInterval, ...]
    is_active: bool


def summarize_session(session: Session, now: datetime | None = None) -> SessionSummary:
    if isinstance(session, ClosedSession):
        return SessionSummary(
            employee_id=session.employee_id,
            employee_name=session.employee_name,
            date_key=session.date_key,
            clock_in=session.clock_in,
            clock_out=session.clock_out,
            break_minutes=session.total_break_minutes,
            worked_minutes=session.total_worked_minutes,
            breaks=session.breaks,
            is_active=False,
        )

    current = now or utc_now()
    return SessionSummary(
        employee_id=session.employee_id,
        employee_name=session.employee_name,
        date_key=session.date_key,
        clock_in=session.clock_in,
        clock_out=None,
        break_minutes=round_minutes(calculate_break_time(session)),
        worked_minutes=round_minutes(project_elapsed(session, current)),
        breaks=session.breaks,
        is_active=True,
    )


def _clock(value: datetime | None, tz: tzinfo) -> str:
    if value is None:
        return "--:--"
    return value.astimezone(tz).strftime("%H:%M")


class Reporter:
    def __init__(self, tracker: SessionTracker) -> None:
        self.tracker = tracker

    def build_today_rows(self, now: datetime | None = None) -> list[SessionSummary]:
        # The running session comes first, then today's closed records.
        # A session recovered from an earlier day is not part of today's summary.
        current = now or utc_now()
        today = local_day_key(current, self.tracker.tz)
        rows: list[SessionSummary] = []

        active = self.tracker.active_session()
        if active is not None and active.date_key == today:
            rows.append(summarize_session(active, current))

        rows.extend(summarize_session(record) for record in self.tracker.today_records(current))
        return rows

    def build_history_groups(self) -> list[tuple[str, list[SessionSummary]]]:
        return [
            (day, [summarize_session(record) for record in records])
            for day, records in self.tracker.history_by_date().items()
        ]

    def build_row_line(self, row: SessionSummary) -> str:
        tz = self.tracker.tz
        marker = " (in progress)" if row.is_active else ""
        return (
            f"- {row.employee_name}{marker}: in {_clock(row.clock_in, tz)}"
            f" | out {_clock(row.clock_out, tz)}"
            f" | break {format_minutes(row.break_minutes)}"
            f" | total {format_minutes(row.worked_minutes)}"
        )

    def build_status_content(self, now: datetime | None = None) -> str:
        current = now or utc_now()
        employee: Employee | None = self.tracker.state.current_employee
        status = self.tracker.status()

        if employee is None:
            return "No employee selected."

        lines = [
            f"**{employee.name}** ({employee.schedule.value}, {employee.expected_hours}h)",
            f"Status: {STATUS_LABELS[status]}",
            f"Elapsed: {format_duration(self.tracker.elapsed_ms(current))}",
        ]

        session = self.tracker.active_session()
        if session is not None:
            tz = self.tracker.tz
            if session.date_key != local_day_key(current, tz):
                lines.append(f"Session date: {session.date_key}")
            lines.append(f"Clock in: {_clock(session.clock_in, tz)}")
            lines.append(f"Break time: {format_duration(to_milliseconds(calculate_break_time(session)))}")
            for index, item in enumerate(session.breaks, start=1):
                lines.append(
                    f"  Break {index}: {_clock(item.start, tz)} - {_clock(item.end, tz)} ({item.duration_minutes} min)"
                )
        return "\n".join(lines)

    def build_today_content(self, now: datetime | None = None) -> str:
        if self.tracker.state.current_employee is None:
            return "Select an employee to see the daily summary."

        rows = self.build_today_rows(now)
        if not rows:
            return "No records for today."
        return "\n".join(self.build_row_line(row) for row in rows)

    def build_history_content(self) -> str:
        groups = self.build_history_groups()
        if not groups:
            return "No history records."

        lines: list[str] = []
        for day, rows in groups:
            lines.append(f"**{day}**")
            lines.extend(self.build_row_line(row) for row in rows)
        return "\n".join(lines)
