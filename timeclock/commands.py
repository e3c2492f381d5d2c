from __future__ import annotations

import argparse
from datetime import datetime

from .models import ScheduleKind
from .reporter import Reporter, format_minutes
from .tracker import SessionTracker


def _add_employee(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    employee = tracker.register_employee(args.name, args.schedule, now=now)
    tracker.select_employee(employee.employee_id, now=now)
    return f"Registered {employee.name} ({employee.schedule.value}, {employee.expected_hours}h) as {employee.employee_id}"


def _employees(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    if not tracker.state.employees:
        return "No employees registered."

    selected = tracker.state.current_employee_id
    lines = []
    for employee in tracker.state.employees:
        marker = "*" if employee.employee_id == selected else " "
        lines.append(f"{marker} {employee.employee_id}: {employee.name} ({employee.schedule.value})")
    return "\n".join(lines)


def _select(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    employee = tracker.select_employee(args.employee_id, now=now)
    return reporter.build_status_content(now) if employee else "Selection cleared."


def _clock_in(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    session = tracker.clock_in(now=now)
    return f"{session.employee_name} clocked in."


def _start_break(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    session = tracker.start_break(now=now)
    return f"{session.employee_name} started a break."


def _end_break(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    session = tracker.end_break(now=now)
    return f"{session.employee_name} ended a break of {session.breaks[-1].duration_minutes} min."


def _clock_out(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    closed = tracker.clock_out(now=now)
    return (
        f"{closed.employee_name} clocked out. Worked {format_minutes(closed.total_worked_minutes)},"
        f" break {format_minutes(closed.total_break_minutes)}."
    )


def _status(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    return reporter.build_status_content(now)


def _today(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    return reporter.build_today_content(now)


def _history(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    return reporter.build_history_content()


def _clear_history(tracker: SessionTracker, reporter: Reporter, args: argparse.Namespace, now: datetime) -> str:
    if not args.yes:
        return "Refusing to clear history without --yes."
    removed = tracker.clear_history()
    return f"Removed {removed} history records."


def register_commands(parser: argparse.ArgumentParser) -> None:
    """Register all subcommands on the parser. Called once during startup."""
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add-employee", help="Register a new employee and select it")
    add.add_argument("name")
    add.add_argument("--schedule", choices=[kind.value for kind in ScheduleKind], default=ScheduleKind.FULL.value)
    add.set_defaults(handler=_add_employee)

    subparsers.add_parser("employees", help="List registered employees").set_defaults(handler=_employees)

    select = subparsers.add_parser("select", help="Select the employee to track")
    select.add_argument("employee_id", nargs="?", default=None)
    select.set_defaults(handler=_select)

    subparsers.add_parser("clock-in", help="Start a work session").set_defaults(handler=_clock_in)
    subparsers.add_parser("start-break", help="Start a break").set_defaults(handler=_start_break)
    subparsers.add_parser("end-break", help="End the current break").set_defaults(handler=_end_break)
    subparsers.add_parser("clock-out", help="Finish the work session").set_defaults(handler=_clock_out)
    subparsers.add_parser("status", help="Show the current session").set_defaults(handler=_status)
    subparsers.add_parser("today", help="Show today's records").set_defaults(handler=_today)
    subparsers.add_parser("history", help="Show history grouped by date").set_defaults(handler=_history)

    clear = subparsers.add_parser("clear-history", help="Delete all closed records")
    clear.add_argument("--yes", action="store_true", help="Confirm the deletion")
    clear.set_defaults(handler=_clear_history)
