import json
from datetime import datetime, timedelta, timezone

import pytest

from timeclock.db import Database
from timeclock.errors import InvalidTimeRange, PersistenceUnavailable, PreconditionFailed
from timeclock.models import ClosedSession, OpenSession, ScheduleKind, TrackerStatus
from timeclock.state import TrackerState
from timeclock.tracker import (
    SessionTracker,
    calculate_break_time,
    project_elapsed,
    round_minutes,
)


def at(hour: int, minute: int = 0, second: int = 0, day: int = 1) -> datetime:
    return datetime(2026, 2, day, hour, minute, second, tzinfo=timezone.utc)


def make_tracker(store=None) -> SessionTracker:
    tracker = SessionTracker(store=store)
    tracker.register_employee("Alice", "full", employee_id="1")
    tracker.register_employee("Bob", "half", employee_id="2")
    tracker.select_employee("1", now=at(8))
    return tracker


class FailingStore:
    def __init__(self) -> None:
        self.save_calls = 0

    def save(self, state) -> None:
        self.save_calls += 1
        raise PersistenceUnavailable("disk full")

    def load(self):
        raise PersistenceUnavailable("disk gone")


def test_round_minutes_rounds_half_away_from_zero() -> None:
    assert round_minutes(timedelta(seconds=29)) == 0
    assert round_minutes(timedelta(seconds=30)) == 1
    assert round_minutes(timedelta(seconds=89, microseconds=999_999)) == 1
    assert round_minutes(timedelta(seconds=-30)) == -1


def test_scenario_full_day_without_breaks() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9))
    closed = tracker.clock_out(now=at(17))

    assert closed.total_worked_minutes == 480
    assert closed.total_break_minutes == 0
    assert tracker.status() is TrackerStatus.IDLE


def test_scenario_lunch_break() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9))
    tracker.start_break(now=at(12))
    tracker.end_break(now=at(12, 30))
    closed = tracker.clock_out(now=at(17))

    assert closed.total_break_minutes == 30
    assert closed.total_worked_minutes == 450
    assert [item.duration_minutes for item in closed.breaks] == [30]


def test_clock_out_while_on_break_closes_the_break() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9))
    tracker.start_break(now=at(12))
    closed = tracker.clock_out(now=at(17, 30))

    assert len(closed.breaks) == 1
    assert closed.breaks[0].end == at(17, 30)
    assert closed.breaks[0].duration_minutes == 330
    assert closed.total_break_minutes == 330
    assert closed.total_worked_minutes == 180


def test_live_elapsed_excludes_break_in_progress() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9))
    assert tracker.elapsed(now=at(10)) == timedelta(hours=1)

    tracker.start_break(now=at(10))
    assert tracker.status() is TrackerStatus.ON_BREAK
    assert tracker.elapsed(now=at(10, 5)) == timedelta(hours=1)
    assert tracker.elapsed(now=at(10, 20)) == timedelta(hours=1)

    tracker.end_break(now=at(10, 20))
    assert tracker.elapsed_ms(now=at(10, 30)) == 70 * 60 * 1000


def test_projection_and_finalization_share_break_arithmetic() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9))
    tracker.start_break(now=at(10))
    tracker.end_break(now=at(10, 15))
    tracker.start_break(now=at(14))
    tracker.end_break(now=at(14, 10))
    session = tracker.state.current_session

    assert calculate_break_time(session) == timedelta(minutes=25)
    assert project_elapsed(session, at(17)) == timedelta(hours=8, minutes=-25)

    closed = tracker.clock_out(now=at(17))
    assert closed.total_break_minutes == 25
    assert project_elapsed(closed, at(23)) == timedelta(minutes=closed.total_worked_minutes)


def test_totals_add_up_to_span_within_rounding() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9, 0, 20))
    tracker.start_break(now=at(11, 0, 50))
    tracker.end_break(now=at(11, 7, 19))
    closed = tracker.clock_out(now=at(16, 45, 41))

    span = round_minutes(closed.clock_out - closed.clock_in)
    assert abs(closed.total_worked_minutes + closed.total_break_minutes - span) <= 1


def test_on_break_flag_tracks_break_start_after_every_command() -> None:
    tracker = make_tracker()

    def check() -> None:
        session = tracker.state.current_session
        if session is not None:
            assert session.on_break == (session.current_break_start is not None)

    tracker.clock_in(now=at(9))
    check()
    tracker.start_break(now=at(10))
    check()
    tracker.end_break(now=at(10, 10))
    check()
    tracker.start_break(now=at(11))
    check()
    tracker.clock_out(now=at(12))
    check()


def test_breaks_are_chronological_and_disjoint() -> None:
    tracker = make_tracker()

    tracker.clock_in(now=at(9))
    for start in (10, 12, 15):
        tracker.start_break(now=at(start))
        tracker.end_break(now=at(start, 20))
    closed = tracker.clock_out(now=at(17))

    for earlier, later in zip(closed.breaks, closed.breaks[1:]):
        assert earlier.end <= later.start


def test_clock_in_without_selection_fails() -> None:
    tracker = SessionTracker()

    with pytest.raises(PreconditionFailed):
        tracker.clock_in(now=at(9))

    assert tracker.state.current_session is None


def test_inapplicable_commands_raise_without_mutation() -> None:
    tracker = make_tracker()

    with pytest.raises(PreconditionFailed):
        tracker.start_break(now=at(9))
    with pytest.raises(PreconditionFailed):
        tracker.end_break(now=at(9))
    with pytest.raises(PreconditionFailed):
        tracker.clock_out(now=at(9))

    session = tracker.clock_in(now=at(9))
    with pytest.raises(PreconditionFailed):
        tracker.clock_in(now=at(9, 5))
    with pytest.raises(PreconditionFailed):
        tracker.end_break(now=at(9, 5))

    tracker.start_break(now=at(10))
    with pytest.raises(PreconditionFailed):
        tracker.start_break(now=at(10, 5))

    assert tracker.state.current_session.clock_in == session.clock_in
    assert tracker.state.current_session.current_break_start == at(10)


def test_reversed_instants_are_rejected() -> None:
    tracker = make_tracker()
    tracker.clock_in(now=at(9))

    with pytest.raises(InvalidTimeRange):
        tracker.start_break(now=at(8, 59))

    tracker.start_break(now=at(12))
    with pytest.raises(InvalidTimeRange):
        tracker.end_break(now=at(11, 59))
    with pytest.raises(InvalidTimeRange):
        tracker.clock_out(now=at(11))

    assert tracker.state.current_session.on_break is True
    assert tracker.state.current_session.breaks == ()
    assert len(tracker.state.history) == 0


def test_naive_datetimes_are_rejected() -> None:
    tracker = make_tracker()

    with pytest.raises(ValueError):
        tracker.clock_in(now=datetime(2026, 2, 1, 9, 0))


def test_snapshot_fields_are_captured_at_clock_in() -> None:
    tracker = make_tracker()
    tracker.select_employee("2", now=at(9))

    session = tracker.clock_in(now=at(9))

    assert session.employee_name == "Bob"
    assert session.schedule is ScheduleKind.HALF
    assert session.expected_hours == 4
    assert session.date_key == "2026-02-01"


def test_register_employee_validates_input() -> None:
    tracker = SessionTracker()

    with pytest.raises(ValueError):
        tracker.register_employee("   ", "full")
    with pytest.raises(ValueError):
        tracker.register_employee("Carol", "weekend")

    first = tracker.register_employee(" Carol ", "half", now=at(9))
    second = tracker.register_employee("Dan", now=at(9))

    assert first.name == "Carol"
    assert first.expected_hours == 4
    assert first.employee_id != second.employee_id
    with pytest.raises(PreconditionFailed):
        tracker.register_employee("Eve", employee_id=first.employee_id)


def test_select_unknown_employee_fails() -> None:
    tracker = make_tracker()

    with pytest.raises(PreconditionFailed):
        tracker.select_employee("404", now=at(9))


def test_switching_employee_parks_and_restores_open_session() -> None:
    tracker = make_tracker()
    tracker.clock_in(now=at(9))
    tracker.start_break(now=at(10))

    tracker.select_employee("2", now=at(10, 5))
    assert tracker.status() is TrackerStatus.IDLE
    assert tracker.history_by_date() == {}

    tracker.clock_in(now=at(10, 6))
    tracker.clock_out(now=at(12))

    tracker.select_employee("1", now=at(12, 1))
    session = tracker.state.current_session
    assert session.employee_id == "1"
    assert session.clock_in == at(9)
    assert session.current_break_start == at(10)
    assert all(isinstance(item, ClosedSession) for item in tracker.state.history)


def test_at_most_one_open_session_per_employee() -> None:
    tracker = make_tracker()
    tracker.clock_in(now=at(9))
    tracker.select_employee("2", now=at(9, 30))
    tracker.clock_in(now=at(9, 30))

    tracker.select_employee(None, now=at(10))
    tracker.select_employee("1", now=at(10))

    owners = [tracker.state.current_session.employee_id]
    owners += [item.employee_id for item in tracker.state.history if isinstance(item, OpenSession)]
    assert sorted(owners) == ["1", "2"]


def test_stale_open_session_from_earlier_day_is_recovered() -> None:
    tracker = make_tracker()
    tracker.clock_in(now=at(9))
    tracker.select_employee("2", now=at(10))

    tracker.select_employee("1", now=at(9, day=2))

    assert tracker.state.current_session.date_key == "2026-02-01"
    closed = tracker.clock_out(now=at(10, day=2))
    assert closed.date_key == "2026-02-01"


def test_today_records_lists_closed_sessions_of_selected_employee() -> None:
    tracker = make_tracker()
    tracker.clock_in(now=at(9))
    tracker.clock_out(now=at(11))
    tracker.clock_in(now=at(12))
    tracker.clock_out(now=at(13))
    tracker.clock_in(now=at(14))

    records = tracker.today_records(now=at(15))

    assert [record.clock_in for record in records] == [at(12), at(9)]
    assert tracker.today_records(now=at(15, day=2)) == []


def test_clear_history_keeps_parked_sessions() -> None:
    tracker = make_tracker()
    tracker.clock_in(now=at(9))
    tracker.clock_out(now=at(10))
    tracker.clock_in(now=at(11))
    tracker.select_employee("2", now=at(11, 30))

    assert tracker.clear_history() == 1
    assert len(tracker.state.history) == 1
    assert tracker.history_by_date() == {}


def test_reload_restores_active_session() -> None:
    db = Database(":memory:")
    db.initialize()
    tracker = make_tracker(store=db)
    tracker.clock_in(now=at(9))
    tracker.start_break(now=at(10))
    tracker.end_break(now=at(10, 15))
    original = tracker.state.current_session

    reloaded = SessionTracker.load(db, now=at(11))

    assert reloaded.state.current_session == original
    assert reloaded.status() is TrackerStatus.WORKING
    assert reloaded.today_records(now=at(11)) == []


def test_reload_reconstitutes_parked_session_for_selected_employee() -> None:
    db = Database(":memory:")
    db.initialize()
    tracker = make_tracker(store=db)
    tracker.clock_in(now=at(9))
    tracker.start_break(now=at(10))
    tracker.end_break(now=at(10, 15))
    original = tracker.state.current_session
    tracker.select_employee("2", now=at(10, 30))

    state = db.load()
    state.current_employee_id = "1"
    db.save(state)

    reloaded = SessionTracker.load(db, now=at(11))

    assert reloaded.state.current_session == original
    assert reloaded.state.history.find_open_session("1") is None
    assert reloaded.history_by_date() == {}

    closed = reloaded.clock_out(now=at(12))
    assert closed.total_break_minutes == 15
    assert list(reloaded.history_by_date()) == ["2026-02-01"]


def test_malformed_stored_state_starts_empty() -> None:
    db = Database(":memory:")
    db.initialize()
    db.set_value("timeTrackingState", "{not json")

    tracker = SessionTracker.load(db, now=at(9))

    assert tracker.state.employees == []
    assert tracker.state.current_session is None
    assert tracker.persistent is True


def test_stored_session_with_overlapping_breaks_starts_empty() -> None:
    db = Database(":memory:")
    db.initialize()
    tracker = make_tracker(store=db)
    tracker.clock_in(now=at(9))

    data = json.loads(db.get_value("timeTrackingState"))
    overlapping = {"start": "2026-02-01T06:00:00+00:00", "end": "2026-02-01T11:00:00+00:00", "duration": 300}
    data["currentSession"]["breaks"] = [overlapping, overlapping]
    db.set_value("timeTrackingState", json.dumps(data))

    reloaded = SessionTracker.load(db, now=at(12))

    assert reloaded.state.employees == []
    assert reloaded.active_session() is None


def test_deeply_nested_stored_state_starts_empty() -> None:
    db = Database(":memory:")
    db.initialize()
    db.set_value("timeTrackingState", "[" * 100_000 + "]" * 100_000)

    tracker = SessionTracker.load(db, now=at(9))

    assert tracker.state.employees == []
    assert tracker.persistent is True


def test_failing_store_degrades_to_memory_only() -> None:
    store = FailingStore()

    tracker = SessionTracker.load(store, now=at(9))
    assert tracker.persistent is False

    tracker = SessionTracker(state=TrackerState(), store=store)
    tracker.register_employee("Alice", employee_id="1")
    tracker.select_employee("1", now=at(9))
    tracker.clock_in(now=at(9))

    assert store.save_calls == 1
    assert tracker.persistent is False
    assert tracker.status() is TrackerStatus.WORKING
