from __future__ import annotations

from collections.abc import Iterable, Iterator

from .models import ClosedSession, OpenSession, Session


class HistoryStore:
    """Sessions ordered most-recent-first.

    Holds finalized sessions plus, transiently, open sessions parked while another
    employee is selected. Open sessions never show up in the closed-record queries.
    """

    def __init__(self, sessions: Iterable[Session] = ()) -> None:
        self._sessions: list[Session] = list(sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def append(self, session: ClosedSession) -> None:
        if not isinstance(session, ClosedSession):
            raise TypeError("Only finalized sessions can be appended to history")
        self._sessions.insert(0, session)

    def park(self, session: OpenSession) -> None:
        if not isinstance(session, OpenSession):
            raise TypeError("Only open sessions can be parked")
        if self.find_open_session(session.employee_id) is not None:
            raise ValueError(f"Employee {session.employee_id} already has a parked open session")
        self._sessions.insert(0, session)

    def find_open_session(self, employee_id: str, date_key: str | None = None) -> OpenSession | None:
        # Most recent match wins; date_key=None matches any day.
        for session in self._sessions:
            if not isinstance(session, OpenSession):
                continue
            if session.employee_id != employee_id:
                continue
            if date_key is not None and session.date_key != date_key:
                continue
            return session
        return None

    def remove(self, session: Session) -> None:
        for index, item in enumerate(self._sessions):
            if item is session:
                del self._sessions[index]
                return
        raise ValueError("Session is not part of the history")

    def query_by_employee_and_date(
        self,
        employee_id: str,
        date_key: str,
        *,
        closed_only: bool = True,
    ) -> list[Session]:
        return [
            session
            for session in self._sessions
            if session.employee_id == employee_id
            and session.date_key == date_key
            and (not closed_only or isinstance(session, ClosedSession))
        ]

    def group_by_date(self) -> dict[str, list[ClosedSession]]:
        grouped: dict[str, list[ClosedSession]] = {}
        for session in self._sessions:
            if not isinstance(session, ClosedSession):
                continue
            grouped.setdefault(session.date_key, []).append(session)

        return {day: grouped[day] for day in sorted(grouped, reverse=True)}

    def clear_closed(self) -> int:
        kept = [session for session in self._sessions if isinstance(session, OpenSession)]
        removed = len(self._sessions) - len(kept)
        self._sessions = kept
        return removed

    def closed_sessions(self) -> list[ClosedSession]:
        return [session for session in self._sessions if isinstance(session, ClosedSession)]
