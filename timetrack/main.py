"""TimeTrack application entry point.

Supports three modes:
  - Tracking mode (default): runs the tracker and the local JSON API
  - Stats mode: prints today's productivity statistics to stdout
  - Prune mode: deletes activities older than N days

Usage:
    python -m timetrack.main                  # track until interrupted
    python -m timetrack.main --stats          # print today's productivity stats
    python -m timetrack.main --prune-days 30  # delete activities older than 30 days
"""

import argparse
import logging
import os
from datetime import date, datetime, timedelta

from timetrack.core.config import get_default_config_path, load_config
from timetrack.core.rules import RuleEngine
from timetrack.persistence.store import ActivityStore
from timetrack.reporting.formatter import TextFormatter


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="timetrack",
        description="TimeTrack: activity session tracker with rule-based categorization",
    )
    parser.add_argument(
        "--config",
        help="Path to config.json (defaults to the platform data directory)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port for the local JSON API (overrides dashboard_port)",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--stats",
        action="store_true",
        help="Print today's productivity statistics and exit",
    )
    group.add_argument(
        "--prune-days",
        type=int,
        metavar="N",
        help="Delete activities older than N days and exit",
    )
    return parser


def _open_store(config: dict) -> ActivityStore:
    db_path = os.path.expanduser(config.get("database_path", "~/.timetrack/timetrack.db"))
    store = ActivityStore(db_path)
    store.init_db()
    return store


def _print_stats(config: dict) -> None:
    """Compute today's productivity stats from the store and print them."""
    store = _open_store(config)
    try:
        engine = RuleEngine(categories=store.get_categories(), rules=store.get_rules())
        start = datetime.combine(date.today(), datetime.min.time())
        end = start + timedelta(days=1)
        stats = engine.calculate_productivity_stats(store.get_activities(start, end), start, end)
        print(TextFormatter.format_productivity(stats, date.today()))
    finally:
        store.close()


def _prune(config: dict, days: int) -> None:
    store = _open_store(config)
    try:
        cutoff = datetime.now() - timedelta(days=days)
        removed = store.prune_before(cutoff)
        print(f"Removed {removed} activities older than {cutoff.date()}")
    finally:
        store.close()


def main(args: list[str] | None = None) -> None:
    """Entry point for TimeTrack.

    When *args* is ``None`` the arguments are read from ``sys.argv``.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = build_parser()
    parsed = parser.parse_args(args)
    if parsed.prune_days is not None and parsed.prune_days < 0:
        parser.error("--prune-days must not be negative")

    config_path = parsed.config or str(get_default_config_path())
    config = load_config(config_path)

    if parsed.stats:
        _print_stats(config)
    elif parsed.prune_days is not None:
        _prune(config, parsed.prune_days)
    else:
        # Imported here so stats/prune runs never touch platform samplers.
        from timetrack.app import TimeTrackApp

        app = TimeTrackApp(config_path)
        app.start(port=parsed.port)


if __name__ == "__main__":
    main()
