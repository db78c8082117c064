"""SQLite-backed persistence for activities, categories and rules."""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from timetrack.core.models import (
    UNCATEGORIZED_ID,
    Activity,
    Category,
    MatchType,
    Rule,
    RuleType,
)

logger = logging.getLogger(__name__)


class ActivityStore:
    """Read/write interface to the local SQLite database.

    Stores finalized activities plus the user-defined categories and
    rules. Timestamps are persisted as ISO 8601 text, durations as whole
    seconds, booleans as 0/1 integers.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_db(self) -> None:
        """Create tables and indexes if they don't already exist."""
        conn = self._get_conn()
        conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY,
                application_name TEXT NOT NULL,
                window_title TEXT NOT NULL,
                process_path TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                duration INTEGER NOT NULL,
                category_id TEXT NOT NULL DEFAULT 'uncategorized',
                category_auto_assigned INTEGER NOT NULL DEFAULT 1,
                category_confidence REAL NOT NULL DEFAULT 50,
                is_coded INTEGER NOT NULL DEFAULT 0,
                is_idle INTEGER NOT NULL DEFAULT 0,
                source TEXT NOT NULL DEFAULT 'desktop'
            );

            CREATE TABLE IF NOT EXISTS categories (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                color TEXT NOT NULL,
                icon TEXT NOT NULL,
                is_productivity INTEGER NOT NULL DEFAULT 1,
                productivity_score INTEGER NOT NULL DEFAULT 50,
                is_default INTEGER NOT NULL DEFAULT 0,
                sort_order INTEGER NOT NULL DEFAULT 50
            );

            CREATE TABLE IF NOT EXISTS rules (
                id TEXT PRIMARY KEY,
                category_id TEXT NOT NULL,
                type TEXT NOT NULL,
                match_type TEXT NOT NULL,
                app_pattern TEXT,
                title_pattern TEXT,
                url_pattern TEXT,
                priority INTEGER NOT NULL DEFAULT 50,
                is_enabled INTEGER NOT NULL DEFAULT 1,
                is_default INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_activity_start
                ON activities(start_time);

            CREATE INDEX IF NOT EXISTS idx_activity_category
                ON activities(category_id);
            """
        )
        conn.commit()

    # ------------------------------------------------------------------
    # Activity operations
    # ------------------------------------------------------------------

    def save_activity(self, activity: Activity) -> None:
        """Insert an activity, replacing any row with the same id."""
        conn = self._get_conn()
        conn.execute(
            """\
            INSERT OR REPLACE INTO activities
                (id, application_name, window_title, process_path, start_time,
                 end_time, duration, category_id, category_auto_assigned,
                 category_confidence, is_coded, is_idle, source)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                activity.id,
                activity.application_name,
                activity.window_title,
                activity.process_path,
                activity.start_time.isoformat(),
                activity.end_time.isoformat(),
                activity.duration,
                activity.category_id,
                int(activity.category_auto_assigned),
                activity.category_confidence,
                int(activity.is_coded),
                int(activity.is_idle),
                activity.source,
            ),
        )
        conn.commit()

    def update_activity(self, activity: Activity) -> bool:
        """Update the end time, duration and category of a stored activity.

        Returns ``False`` when no row has the activity's id.
        """
        conn = self._get_conn()
        cursor = conn.execute(
            """\
            UPDATE activities
            SET end_time = ?, duration = ?, category_id = ?,
                category_auto_assigned = ?, category_confidence = ?, is_coded = ?
            WHERE id = ?
            """,
            (
                activity.end_time.isoformat(),
                activity.duration,
                activity.category_id,
                int(activity.category_auto_assigned),
                activity.category_confidence,
                int(activity.is_coded),
                activity.id,
            ),
        )
        conn.commit()
        return cursor.rowcount > 0

    def get_activity_by_id(self, activity_id: str) -> Optional[Activity]:
        """Return a single activity by id, or ``None``."""
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM activities WHERE id = ?", (activity_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_activity(row)

    def get_activities(self, start: datetime, end: datetime) -> list[Activity]:
        """Return all activities whose start_time falls in [start, end)."""
        conn = self._get_conn()
        rows = conn.execute(
            """\
            SELECT * FROM activities
            WHERE start_time >= ? AND start_time < ?
            ORDER BY start_time
            """,
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [self._row_to_activity(r) for r in rows]

    def set_activity_category(
        self, activity_id: str, category_id: str, auto_assigned: bool = False
    ) -> bool:
        """Persist a (manual) category assignment for one activity."""
        conn = self._get_conn()
        cursor = conn.execute(
            """\
            UPDATE activities
            SET category_id = ?, category_auto_assigned = ?, category_confidence = ?
            WHERE id = ?
            """,
            (category_id, int(auto_assigned), 50.0 if auto_assigned else 100.0, activity_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def reassign_category(self, old_category_id: str, new_category_id: str = UNCATEGORIZED_ID) -> int:
        """Move every activity in *old_category_id* to *new_category_id*."""
        conn = self._get_conn()
        cursor = conn.execute(
            """\
            UPDATE activities
            SET category_id = ?, category_auto_assigned = 1
            WHERE category_id = ?
            """,
            (new_category_id, old_category_id),
        )
        conn.commit()
        logger.info("Moved %d activities from %s to %s", cursor.rowcount, old_category_id, new_category_id)
        return cursor.rowcount

    def prune_before(self, cutoff: datetime) -> int:
        """Delete activities that ended before *cutoff*. Returns the count."""
        conn = self._get_conn()
        cursor = conn.execute(
            "DELETE FROM activities WHERE end_time < ?", (cutoff.isoformat(),)
        )
        conn.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Category operations
    # ------------------------------------------------------------------

    def save_category(self, category: Category) -> None:
        conn = self._get_conn()
        conn.execute(
            """\
            INSERT OR REPLACE INTO categories
                (id, name, color, icon, is_productivity, productivity_score,
                 is_default, sort_order)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                category.id,
                category.name,
                category.color,
                category.icon,
                int(category.is_productivity),
                category.productivity_score,
                int(category.is_default),
                category.order,
            ),
        )
        conn.commit()

    def delete_category(self, category_id: str) -> None:
        conn = self._get_conn()
        conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        conn.commit()

    def get_categories(self) -> list[Category]:
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM categories ORDER BY sort_order, id").fetchall()
        return [self._row_to_category(r) for r in rows]

    # ------------------------------------------------------------------
    # Rule operations
    # ------------------------------------------------------------------

    def save_rule(self, rule: Rule) -> None:
        conn = self._get_conn()
        conn.execute(
            """\
            INSERT OR REPLACE INTO rules
                (id, category_id, type, match_type, app_pattern, title_pattern,
                 url_pattern, priority, is_enabled, is_default, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rule.id,
                rule.category_id,
                rule.type.value,
                rule.match_type.value,
                rule.app_pattern,
                rule.title_pattern,
                rule.url_pattern,
                rule.priority,
                int(rule.is_enabled),
                int(rule.is_default),
                rule.created_at.isoformat(),
            ),
        )
        conn.commit()

    def delete_rule(self, rule_id: str) -> None:
        conn = self._get_conn()
        conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        conn.commit()

    def get_rules(self) -> list[Rule]:
        """Return stored rules in the order they were created."""
        conn = self._get_conn()
        rows = conn.execute("SELECT * FROM rules ORDER BY created_at, rowid").fetchall()
        return [self._row_to_rule(r) for r in rows]

    # ------------------------------------------------------------------
    # Row mapping helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> Activity:
        return Activity(
            id=row["id"],
            application_name=row["application_name"],
            window_title=row["window_title"],
            start_time=datetime.fromisoformat(row["start_time"]),
            end_time=datetime.fromisoformat(row["end_time"]),
            duration=row["duration"],
            category_id=row["category_id"],
            category_auto_assigned=bool(row["category_auto_assigned"]),
            category_confidence=row["category_confidence"],
            is_coded=bool(row["is_coded"]),
            is_idle=bool(row["is_idle"]),
            process_path=row["process_path"],
            source=row["source"] if "source" in row.keys() else "desktop",
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            icon=row["icon"],
            is_productivity=bool(row["is_productivity"]),
            productivity_score=row["productivity_score"],
            is_default=bool(row["is_default"]),
            order=row["sort_order"],
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> Rule:
        return Rule(
            id=row["id"],
            category_id=row["category_id"],
            type=RuleType(row["type"]),
            match_type=MatchType(row["match_type"]),
            app_pattern=row["app_pattern"],
            title_pattern=row["title_pattern"],
            url_pattern=row["url_pattern"],
            priority=row["priority"],
            is_enabled=bool(row["is_enabled"]),
            is_default=bool(row["is_default"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
