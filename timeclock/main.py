from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from .commands import register_commands
from .config import Config, load_config
from .db import Database
from .errors import PersistenceUnavailable, TimeClockError
from .reporter import Reporter
from .tracker import SessionTracker, utc_now

logger = logging.getLogger("timeclock")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timeclock", description="Employee clock-in/clock-out tracker")
    register_commands(parser)
    return parser


def open_tracker(config: Config) -> tuple[SessionTracker, Database | None]:
    now = utc_now()
    try:
        db = Database(config.db_path)
        db.initialize()
    except PersistenceUnavailable as exc:
        logger.warning("Persistence unavailable, running in memory only: %s", exc)
        return SessionTracker(tz=config.timezone), None

    return SessionTracker.load(db, tz=config.timezone, now=now), db


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    config = load_config()
    configure_logging(config.log_level)

    args = build_parser().parse_args(argv)
    tracker, db = open_tracker(config)
    reporter = Reporter(tracker)

    try:
        print(args.handler(tracker, reporter, args, utc_now()))
    except (TimeClockError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if db is not None:
            db.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
