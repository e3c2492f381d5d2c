from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .history import HistoryStore
from .models import BreakInterval, ClosedSession, Employee, OpenSession, ScheduleKind, Session


@dataclass
class TrackerState:
    """Everything the engine owns: roster, selection, active session and history."""

    employees: list[Employee] = field(default_factory=list)
    current_employee_id: str | None = None
    current_session: OpenSession | None = None
    history: HistoryStore = field(default_factory=HistoryStore)

    def find_employee(self, employee_id: str) -> Employee | None:
        for employee in self.employees:
            if employee.employee_id == employee_id:
                return employee
        return None

    @property
    def current_employee(self) -> Employee | None:
        if self.current_employee_id is None:
            return None
        return self.find_employee(self.current_employee_id)


def parse_iso_utc(value: str | None) -> datetime | None:
    """Parse an ISO timestamp and normalize to UTC."""
    if not value:
        return None

    # fromisoformat() before 3.11 rejects the "Z" suffix browsers emit.
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        # Stored values should be timezone-aware; treat naive values as UTC for resilience.
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _required_instant(data: dict[str, Any], key: str) -> datetime:
    parsed = parse_iso_utc(data.get(key))
    if parsed is None:
        raise ValueError(f"Missing timestamp field: {key}")
    return parsed


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def employee_to_dict(employee: Employee) -> dict[str, Any]:
    return {
        "id": employee.employee_id,
        "name": employee.name,
        "scheduleType": employee.schedule.value,
        "expectedHours": employee.expected_hours,
    }


def employee_from_dict(data: dict[str, Any]) -> Employee:
    name = str(data["name"]).strip()
    if not name:
        raise ValueError("Employee name must not be empty")
    return Employee(
        employee_id=str(data["id"]),
        name=name,
        schedule=ScheduleKind(data["scheduleType"]),
    )


def break_to_dict(interval: BreakInterval) -> dict[str, Any]:
    return {
        "start": _to_iso(interval.start),
        "end": _to_iso(interval.end),
        "duration": interval.duration_minutes,
    }


def break_from_dict(data: dict[str, Any]) -> BreakInterval:
    start = _required_instant(data, "start")
    end = _required_instant(data, "end")
    if end < start:
        raise ValueError(f"Break ends before it starts: {data}")
    return BreakInterval(start=start, end=end, duration_minutes=int(data["duration"]))


def session_to_dict(session: Session) -> dict[str, Any]:
    data: dict[str, Any] = {
        "employeeId": session.employee_id,
        "employeeName": session.employee_name,
        "scheduleType": session.schedule.value,
        "expectedHours": session.expected_hours,
        "date": session.date_key,
        "clockIn": _to_iso(session.clock_in),
        "clockOut": None,
        "breaks": [break_to_dict(item) for item in session.breaks],
        "onBreak": session.on_break,
        "currentBreakStart": None,
    }

    if isinstance(session, ClosedSession):
        data["clockOut"] = _to_iso(session.clock_out)
        data["totalMinutes"] = session.total_worked_minutes
        data["breakMinutes"] = session.total_break_minutes
    else:
        data["currentBreakStart"] = _to_iso(session.current_break_start)
    return data


def _check_timeline(clock_in: datetime, breaks: tuple[BreakInterval, ...], end: datetime | None) -> datetime:
    """Reject breaks outside the session or overlapping each other.

    Returns the latest boundary (clock-in or last break end).
    """
    boundary = clock_in
    for item in breaks:
        if item.start < boundary:
            raise ValueError(f"Break starting {item.start.isoformat()} overlaps {boundary.isoformat()}")
        boundary = item.end

    if end is not None and end < boundary:
        raise ValueError(f"Session ends {end.isoformat()} before {boundary.isoformat()}")
    return boundary


def session_from_dict(data: dict[str, Any]) -> Session:
    common = {
        "employee_id": str(data["employeeId"]),
        "employee_name": str(data["employeeName"]),
        "schedule": ScheduleKind(data["scheduleType"]),
        "expected_hours": int(data["expectedHours"]),
        "date_key": str(data["date"]),
        "clock_in": _required_instant(data, "clockIn"),
        "breaks": tuple(break_from_dict(item) for item in data.get("breaks") or []),
    }

    clock_out = parse_iso_utc(data.get("clockOut"))
    if clock_out is None:
        current_break_start = parse_iso_utc(data.get("currentBreakStart"))
        if bool(data.get("onBreak")) != (current_break_start is not None):
            raise ValueError("onBreak and currentBreakStart disagree")
        _check_timeline(common["clock_in"], common["breaks"], current_break_start)
        return OpenSession(current_break_start=current_break_start, **common)

    _check_timeline(common["clock_in"], common["breaks"], clock_out)
    if data.get("onBreak"):
        raise ValueError("A closed session cannot be on break")
    return ClosedSession(
        clock_out=clock_out,
        total_worked_minutes=int(data["totalMinutes"]),
        total_break_minutes=int(data["breakMinutes"]),
        **common,
    )


def state_to_dict(state: TrackerState) -> dict[str, Any]:
    return {
        "employees": [employee_to_dict(item) for item in state.employees],
        "currentEmployee": state.current_employee_id,
        "currentSession": session_to_dict(state.current_session) if state.current_session else None,
        "history": [session_to_dict(item) for item in state.history],
    }


def state_from_dict(data: dict[str, Any]) -> TrackerState:
    if not isinstance(data, dict):
        raise ValueError("State payload must be an object")

    employees = [employee_from_dict(item) for item in data.get("employees") or []]
    employee_ids = [item.employee_id for item in employees]
    if len(employee_ids) != len(set(employee_ids)):
        raise ValueError("Duplicate employee ids in roster")

    current_employee = data.get("currentEmployee")
    if isinstance(current_employee, dict):
        # Older payloads stored the whole employee record.
        current_employee = current_employee.get("id")
    current_employee_id = str(current_employee) if current_employee else None

    current_session = None
    if data.get("currentSession"):
        current_session = session_from_dict(data["currentSession"])
        if not isinstance(current_session, OpenSession):
            raise ValueError("currentSession must be open")

    history = HistoryStore(session_from_dict(item) for item in data.get("history") or [])

    open_owners = [s.employee_id for s in history if isinstance(s, OpenSession)]
    if current_session is not None:
        open_owners.append(current_session.employee_id)
    if len(open_owners) != len(set(open_owners)):
        raise ValueError("More than one open session for the same employee")

    return TrackerState(
        employees=employees,
        current_employee_id=current_employee_id,
        current_session=current_session,
        history=history,
    )


def dumps_state(state: TrackerState) -> str:
    return json.dumps(state_to_dict(state), ensure_ascii=False)


def loads_state(payload: str) -> TrackerState:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"State payload is not valid JSON: {exc}") from exc
    except RecursionError as exc:
        raise ValueError("State payload is nested too deeply") from exc
    return state_from_dict(data)
