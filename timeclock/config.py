from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True, slots=True)
class Config:
    db_path: Path
    timezone: ZoneInfo
    log_level: int


def _env(name: str, default: str) -> str:
    value = os.getenv(name, default).strip()
    if not value:
        raise ValueError(f"Environment variable {name} must not be empty")
    return value


def _timezone_from_env(name: str, default: str) -> ZoneInfo:
    tz_name = _env(name, default)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def _log_level_from_env(name: str, default: str) -> int:
    level_name = _env(name, default).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level in {name}: {level_name}")
    return level


def load_config() -> Config:
    return Config(
        db_path=Path(_env("TIMECLOCK_DB_PATH", "timeclock.db")),
        timezone=_timezone_from_env("TIMECLOCK_TIMEZONE", "UTC"),
        log_level=_log_level_from_env("TIMECLOCK_LOG_LEVEL", "INFO"),
    )
