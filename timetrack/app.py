"""Application wiring for TimeTrack.

Builds the store, rule engine, sampler and session tracker from the
configuration, starts tracking and the local JSON API, and routes every
category/rule change through both the engine and the store.
"""

import logging
import os
import threading
from datetime import datetime, timedelta
from typing import Any, Optional

from timetrack.core.config import (
    load_config,
    save_config,
    settings_from_config,
    settings_to_config,
)
from timetrack.core.models import (
    UNCATEGORIZED_ID,
    Activity,
    Category,
    OperationResult,
    ProductivityStats,
    Rule,
    TrackerState,
)
from timetrack.core.rules import RuleEngine
from timetrack.core.tracker import SessionTracker
from timetrack.persistence.store import ActivityStore
from timetrack.platform.factory import create_window_provider, is_event_driven

logger = logging.getLogger(__name__)


class TimeTrackApp:
    """Owns every long-lived component of a running TimeTrack instance."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        self.config = load_config(config_path)
        self.tracker: Optional[SessionTracker] = None
        self.rule_engine: Optional[RuleEngine] = None
        self._store: Optional[ActivityStore] = None
        self._observer = None  # MacOSWindowObserver in event-driven mode
        self._shutdown = threading.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, port: Optional[int] = None) -> None:
        """Initialize components, start tracking and the API, then block until stopped."""
        self.init_components()
        self.prune_old_activities()
        self.start_tracking()

        from timetrack.ui.web import start_dashboard
        start_dashboard(self, port or int(self.config.get("dashboard_port", 5555)))

        try:
            while not self._shutdown.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted; shutting down")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop tracking (flushing the open session) and close the store."""
        self.stop_tracking()
        self._shutdown.set()
        if self._store is not None:
            self._store.close()
            self._store = None

    def init_components(self) -> None:
        """Wire up the store, rule engine and tracker from config."""
        config = self.config

        db_path = os.path.expanduser(config.get("database_path", "~/.timetrack/timetrack.db"))
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._store = ActivityStore(db_path)
        self._store.init_db()

        self.rule_engine = RuleEngine(
            categories=self._store.get_categories(),
            rules=self._store.get_rules(),
        )
        self.rule_engine.add_category_deleted_listener(self._on_category_deleted)

        try:
            provider = create_window_provider(capture_urls=bool(config.get("capture_urls", True)))
        except OSError:
            logger.warning("No window sampler for this platform; tracking disabled")
            return

        event_driven = is_event_driven()
        self.tracker = SessionTracker(
            provider,
            self.rule_engine,
            self._on_activity,
            settings=settings_from_config(config),
            idle_probe=provider.get_idle_seconds,
            on_activity_merged=self._on_activity_merged,
            on_status_change=self._on_status_change,
            use_idle_timer=event_driven,
            polling=not event_driven,
        )
        if event_driven:
            from timetrack.platform.macos_observer import MacOSWindowObserver

            self._observer = MacOSWindowObserver(
                provider=provider,
                on_change=self.tracker.process_sample,
                title_check_interval=max(1.0, self.tracker.settings.poll_interval),
            )

    # ------------------------------------------------------------------
    # Tracking control
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        return self.tracker.state if self.tracker is not None else TrackerState.STOPPED

    def start_tracking(self) -> None:
        if self.tracker is None:
            logger.info("No tracker available; skipping background tracking")
            return
        self.tracker.start()
        if self._observer is not None and not self._observer.running:
            self._observer.start()

    def pause_tracking(self) -> None:
        if self.tracker is not None:
            self.tracker.pause()
        self._stop_observer()

    def resume_tracking(self) -> None:
        if self.tracker is None:
            return
        self.tracker.resume()
        if self._observer is not None and not self._observer.running:
            self._observer.start()

    def stop_tracking(self) -> None:
        self._stop_observer()
        if self.tracker is not None:
            self.tracker.stop()

    def update_settings(self, changes: dict[str, Any]) -> OperationResult:
        """Apply tracker setting changes and persist them to config.json."""
        if self.tracker is None:
            return OperationResult.fail("Tracker not available")
        result = self.tracker.update_settings(**changes)
        if result:
            self.config = settings_to_config(self.tracker.settings, self.config)
            save_config(self.config, self.config_path)
        return result

    # ------------------------------------------------------------------
    # Categories and rules
    # ------------------------------------------------------------------

    def upsert_category(self, category: Category) -> OperationResult:
        result = self.rule_engine.upsert_category(category)
        if result:
            self._store.save_category(self.rule_engine.get_category(category.id))
        return result

    def delete_category(self, category_id: str) -> OperationResult:
        return self.rule_engine.delete_category(category_id)

    def upsert_rule(self, rule: Rule) -> OperationResult:
        result = self.rule_engine.upsert_rule(rule)
        if result:
            self._store.save_rule(rule)
        return result

    def delete_rule(self, rule_id: str) -> OperationResult:
        result = self.rule_engine.delete_rule(rule_id)
        if result:
            self._store.delete_rule(rule_id)
        return result

    def toggle_rule(self, rule_id: str) -> OperationResult:
        result = self.rule_engine.toggle_rule(rule_id)
        if result:
            self._store.save_rule(self.rule_engine.get_rule(rule_id))
        return result

    def manual_categorize(self, activity_id: str, category_id: str) -> OperationResult:
        """Override an activity's category in the engine and, if persisted, the store."""
        result = self.rule_engine.manual_categorize(activity_id, category_id)
        if result:
            self._store.set_activity_category(activity_id, category_id)
        return result

    # ------------------------------------------------------------------
    # Statistics and retention
    # ------------------------------------------------------------------

    def productivity_stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> ProductivityStats:
        """Stats for [start, end); defaults to today."""
        if start is None:
            start = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        if end is None:
            end = start + timedelta(days=1)
        activities = self._store.get_activities(start, end)
        return self.rule_engine.calculate_productivity_stats(activities, start, end)

    def prune_old_activities(self, now: Optional[datetime] = None) -> int:
        days = self.config.get("retention_days")
        if not days or self._store is None:
            return 0
        cutoff = (now or datetime.now()) - timedelta(days=int(days))
        removed = self._store.prune_before(cutoff)
        if removed:
            logger.info("Pruned %d activities older than %s", removed, cutoff.date())
        return removed

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_activity(self, activity: Activity) -> None:
        self._store.save_activity(activity)

    def _on_activity_merged(self, activity: Activity) -> None:
        if not self._store.update_activity(activity):
            self._store.save_activity(activity)

    def _on_status_change(self, state: TrackerState) -> None:
        logger.info("Tracker state: %s", state.value)

    def _on_category_deleted(self, category_id: str) -> None:
        moved = self._store.reassign_category(category_id, UNCATEGORIZED_ID)
        self._store.delete_category(category_id)
        for rule in self.rule_engine.get_rules_for_category(UNCATEGORIZED_ID):
            if not rule.is_default:
                self._store.save_rule(rule)
        logger.info("Deleted category %s; %d activities moved to uncategorized", category_id, moved)

    def _stop_observer(self) -> None:
        if self._observer is not None and self._observer.running:
            self._observer.stop()
