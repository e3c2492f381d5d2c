from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol

from .errors import PersistenceUnavailable
from .state import TrackerState, dumps_state, loads_state

STATE_KEY = "timeTrackingState"


class StateStore(Protocol):
    def save(self, state: TrackerState) -> None: ...

    def load(self) -> TrackerState | None: ...


class Database:
    """Thin SQLite access layer persisting the whole tracker state as one document."""

    def __init__(self, db_path: str | Path) -> None:
        try:
            self._conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(f"Unable to open database {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        # state: small key/value store; the tracker document lives under STATE_KEY.
        try:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS state (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(f"Unable to initialize database: {exc}") from exc

    def get_value(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM state WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(f"Unable to read {key}: {exc}") from exc
        if row is None:
            return None
        return str(row["value"])

    def set_value(self, key: str, value: str) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO state (key, value)
                VALUES (?, ?)
                ON CONFLICT(key)
                DO UPDATE SET value=excluded.value
                """,
                (key, value),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceUnavailable(f"Unable to write {key}: {exc}") from exc

    def save(self, state: TrackerState) -> None:
        self.set_value(STATE_KEY, dumps_state(state))

    def load(self) -> TrackerState | None:
        """Return the stored state, ``None`` when nothing was saved yet.

        Raises ValueError for a malformed document.
        """
        payload = self.get_value(STATE_KEY)
        if payload is None:
            return None
        return loads_state(payload)
