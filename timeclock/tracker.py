from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal

from .db import StateStore
from .errors import InvalidTimeRange, PersistenceUnavailable, PreconditionFailed
from .models import (
    BreakInterval,
    ClosedSession,
    Employee,
    OpenSession,
    ScheduleKind,
    Session,
    TrackerStatus,
)
from .state import TrackerState

_MICROS_PER_MINUTE = Decimal(60_000_000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _instant(value: datetime | None) -> datetime:
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return value


def local_day_key(instant: datetime, tz: tzinfo) -> str:
    return instant.astimezone(tz).date().isoformat()


def round_minutes(delta: timedelta) -> int:
    """Whole minutes in ``delta``, rounding halves away from zero."""
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    return int((Decimal(micros) / _MICROS_PER_MINUTE).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_milliseconds(delta: timedelta) -> int:
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def calculate_break_time(session: Session) -> timedelta:
    # Shared by the live projection and finalization so the two never diverge.
    return sum((item.end - item.start for item in session.breaks), timedelta())


def project_elapsed(session: Session, now: datetime) -> timedelta:
    """Worked time so far, excluding completed breaks and the break in progress."""
    if isinstance(session, ClosedSession):
        return timedelta(minutes=session.total_worked_minutes)

    elapsed = now - session.clock_in - calculate_break_time(session)
    if session.current_break_start is not None:
        elapsed -= now - session.current_break_start
    return elapsed


def _latest_boundary(session: OpenSession) -> datetime:
    if session.breaks:
        return session.breaks[-1].end
    return session.clock_in


def close_break(session: OpenSession, now: datetime) -> OpenSession:
    start = session.current_break_start
    if start is None:
        raise PreconditionFailed("No break in progress")
    if now < start:
        raise InvalidTimeRange(start, now, "break")

    interval = BreakInterval(start=start, end=now, duration_minutes=round_minutes(now - start))
    return replace(session, breaks=session.breaks + (interval,), current_break_start=None)


def finalize(session: OpenSession, now: datetime) -> ClosedSession:
    """Close ``session`` at ``now`` and freeze its worked/break totals.

    A break still in progress is ended at ``now`` first.
    """
    if session.on_break:
        session = close_break(session, now)
    if now < _latest_boundary(session):
        raise InvalidTimeRange(_latest_boundary(session), now, "session")

    break_time = calculate_break_time(session)
    worked = (now - session.clock_in) - break_time

    return ClosedSession(
        employee_id=session.employee_id,
        employee_name=session.employee_name,
        schedule=session.schedule,
        expected_hours=session.expected_hours,
        date_key=session.date_key,
        clock_in=session.clock_in,
        clock_out=now,
        breaks=session.breaks,
        total_worked_minutes=round_minutes(worked),
        total_break_minutes=round_minutes(break_time),
    )


class SessionTracker:
    def __init__(
        self,
        state: TrackerState | None = None,
        store: StateStore | None = None,
        tz: tzinfo = timezone.utc,
        logger: logging.Logger | None = None,
    ) -> None:
        self.state = state or TrackerState()
        self.store = store
        self.tz = tz
        self.logger = logger or logging.getLogger(__name__)
        # Commands read-modify-write the state; one lock keeps them atomic.
        self._lock = threading.Lock()

    @classmethod
    def load(
        cls,
        store: StateStore,
        *,
        tz: tzinfo = timezone.utc,
        now: datetime | None = None,
        logger: logging.Logger | None = None,
    ) -> SessionTracker:
        logger = logger or logging.getLogger(__name__)
        state: TrackerState | None = None
        active_store: StateStore | None = store

        try:
            state = store.load()
        except PersistenceUnavailable as exc:
            logger.warning("Persistence unavailable, running in memory only: %s", exc)
            active_store = None
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding malformed stored state: %s", exc)

        tracker = cls(state=state, store=active_store, tz=tz, logger=logger)
        tracker._recover(_instant(now))
        return tracker

    @property
    def persistent(self) -> bool:
        return self.store is not None

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self.state)
        except PersistenceUnavailable as exc:
            self.logger.warning("Saving state failed, continuing in memory only: %s", exc)
            self.store = None

    def save(self) -> None:
        with self._lock:
            self._persist()

    def _recover(self, now: datetime) -> None:
        with self._lock:
            employee_id = self.state.current_employee_id
            if employee_id is not None and self.state.find_employee(employee_id) is None:
                self.logger.warning("Stored selection %s is not in the roster; clearing it", employee_id)
                self.state.current_employee_id = None
                employee_id = None

            active = self.state.current_session
            if active is not None and active.employee_id != employee_id:
                self._park_active()

            if employee_id is not None and self.state.current_session is None:
                self._reconstitute(employee_id, now)

    def _park_active(self) -> None:
        active = self.state.current_session
        if active is None:
            return
        self.state.history.park(active)
        self.state.current_session = None
        self.logger.info("Parked open session: employee=%s date=%s", active.employee_id, active.date_key)

    def _reconstitute(self, employee_id: str, now: datetime) -> OpenSession | None:
        history = self.state.history
        today = local_day_key(now, self.tz)
        # Fall back to an older day so a stale open session can still be closed.
        session = history.find_open_session(employee_id, today) or history.find_open_session(employee_id)
        if session is None:
            return None

        history.remove(session)
        self.state.current_session = session
        self.logger.info("Reconstituted open session: employee=%s date=%s", employee_id, session.date_key)
        return session

    def register_employee(
        self,
        name: str,
        schedule: ScheduleKind | str = ScheduleKind.FULL,
        employee_id: str | None = None,
        now: datetime | None = None,
    ) -> Employee:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Employee name must not be empty")
        kind = ScheduleKind(schedule)

        with self._lock:
            if employee_id is None:
                candidate = int(_instant(now).timestamp() * 1000)
                while self.state.find_employee(str(candidate)) is not None:
                    candidate += 1
                employee_id = str(candidate)
            elif self.state.find_employee(employee_id) is not None:
                raise PreconditionFailed(f"Employee {employee_id} is already registered")

            employee = Employee(employee_id=employee_id, name=clean_name, schedule=kind)
            self.state.employees.append(employee)
            self.logger.info("Employee registered: id=%s schedule=%s", employee_id, kind.value)
            self._persist()
            return employee

    def select_employee(self, employee_id: str | None, now: datetime | None = None) -> Employee | None:
        current = _instant(now)
        with self._lock:
            if employee_id is None:
                self._park_active()
                self.state.current_employee_id = None
                self._persist()
                return None

            employee = self.state.find_employee(employee_id)
            if employee is None:
                raise PreconditionFailed(f"Unknown employee {employee_id}")

            active = self.state.current_session
            if active is not None and active.employee_id != employee.employee_id:
                self._park_active()

            self.state.current_employee_id = employee.employee_id
            if self.state.current_session is None:
                self._reconstitute(employee.employee_id, current)

            self._persist()
            return employee

    def _require_session(self) -> OpenSession:
        session = self.state.current_session
        if session is None:
            raise PreconditionFailed("No active session")
        return session

    def clock_in(self, now: datetime | None = None) -> OpenSession:
        started = _instant(now)
        with self._lock:
            employee = self.state.current_employee
            if employee is None:
                raise PreconditionFailed("No employee selected")
            if self.state.current_session is not None:
                raise PreconditionFailed(f"{employee.name} is already clocked in")
            if self.state.history.find_open_session(employee.employee_id) is not None:
                raise PreconditionFailed(f"{employee.name} has an unfinished session in history")

            session = OpenSession(
                employee_id=employee.employee_id,
                employee_name=employee.name,
                schedule=employee.schedule,
                expected_hours=employee.expected_hours,
                date_key=local_day_key(started, self.tz),
                clock_in=started,
            )
            self.state.current_session = session
            self.logger.info("Clock in: employee=%s at=%s", employee.employee_id, started.isoformat())
            self._persist()
            return session

    def start_break(self, now: datetime | None = None) -> OpenSession:
        started = _instant(now)
        with self._lock:
            session = self._require_session()
            if session.on_break:
                raise PreconditionFailed("Already on break")
            boundary = _latest_boundary(session)
            if started < boundary:
                raise InvalidTimeRange(boundary, started, "break start")

            session = replace(session, current_break_start=started)
            self.state.current_session = session
            self.logger.info("Break started: employee=%s", session.employee_id)
            self._persist()
            return session

    def end_break(self, now: datetime | None = None) -> OpenSession:
        ended = _instant(now)
        with self._lock:
            session = self._require_session()
            if not session.on_break:
                raise PreconditionFailed("Not on break")

            session = close_break(session, ended)
            self.state.current_session = session
            self.logger.info(
                "Break ended: employee=%s duration=%smin",
                session.employee_id,
                session.breaks[-1].duration_minutes,
            )
            self._persist()
            return session

    def clock_out(self, now: datetime | None = None) -> ClosedSession:
        ended = _instant(now)
        with self._lock:
            session = self._require_session()
            closed = finalize(session, ended)

            self.state.history.append(closed)
            self.state.current_session = None
            self.logger.info(
                "Clock out: employee=%s worked=%smin break=%smin",
                closed.employee_id,
                closed.total_worked_minutes,
                closed.total_break_minutes,
            )
            self._persist()
            return closed

    def status(self) -> TrackerStatus:
        with self._lock:
            session = self.state.current_session
            if session is None:
                return TrackerStatus.IDLE
            if session.on_break:
                return TrackerStatus.ON_BREAK
            return TrackerStatus.WORKING

    def active_session(self) -> OpenSession | None:
        with self._lock:
            return self.state.current_session

    def elapsed(self, now: datetime | None = None) -> timedelta:
        current = _instant(now)
        with self._lock:
            session = self.state.current_session
            if session is None:
                return timedelta()
            return project_elapsed(session, current)

    def elapsed_ms(self, now: datetime | None = None) -> int:
        return to_milliseconds(self.elapsed(now))

    def today_records(self, now: datetime | None = None) -> list[ClosedSession]:
        today = local_day_key(_instant(now), self.tz)
        with self._lock:
            employee_id = self.state.current_employee_id
            if employee_id is None:
                return []
            records = self.state.history.query_by_employee_and_date(employee_id, today, closed_only=True)
            return [record for record in records if isinstance(record, ClosedSession)]

    def history_by_date(self) -> dict[str, list[ClosedSession]]:
        with self._lock:
            return self.state.history.group_by_date()

    def clear_history(self) -> int:
        with self._lock:
            removed = self.state.history.clear_closed()
            self.logger.info("History cleared: %d records removed", removed)
            self._persist()
            return removed
