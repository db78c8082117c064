"""Unit tests for the SessionTracker state machine."""

import logging
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from timetrack.core.models import (
    UNCATEGORIZED_ID,
    Category,
    MatchType,
    Rule,
    RuleType,
    Sample,
    TrackerSettings,
    TrackerState,
)
from timetrack.core.rules import RuleEngine
from timetrack.core.tracker import SessionTracker, normalize_title

T0 = datetime(2025, 1, 15, 9, 0, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def set(self, seconds):
        self.now = T0 + timedelta(seconds=seconds)


def _at(seconds):
    return T0 + timedelta(seconds=seconds)


def _engine():
    categories = [
        Category(id="work", name="Work", is_productivity=True),
        Category(id="fun", name="Fun", is_productivity=False),
    ]
    rules = [
        Rule(id="code", category_id="work", type=RuleType.APP,
             match_type=MatchType.EXACT, app_pattern="Code"),
        Rule(id="game", category_id="fun", type=RuleType.APP,
             match_type=MatchType.EXACT, app_pattern="Game"),
    ]
    return RuleEngine(categories=categories, rules=rules, include_builtins=False)


def _make_tracker(sampler=None, engine=None, clock=None, **kwargs):
    """Build a started, non-polling tracker that records emitted activities."""
    emitted = []
    clock = clock or FakeClock()
    tracker = SessionTracker(
        sampler or MagicMock(return_value=None),
        engine or _engine(),
        emitted.append,
        settings=kwargs.pop("settings", TrackerSettings()),
        clock=clock,
        polling=False,
        **kwargs,
    )
    tracker.start()
    return tracker, emitted, clock


CODE = Sample(app_name="Code", window_title="main.py")
CHROME = Sample(app_name="Chrome", window_title="Docs")
SLACK = Sample(app_name="Slack", window_title="general")


# ---------------------------------------------------------------------------
# normalize_title
# ---------------------------------------------------------------------------

class TestNormalizeTitle:
    def test_strips_counters_and_clock(self):
        assert normalize_title("Inbox (3) - Mail  12:45") == "inbox - mail"

    def test_empty(self):
        assert normalize_title(None) == ""
        assert normalize_title("") == ""


# ---------------------------------------------------------------------------
# Session boundaries
# ---------------------------------------------------------------------------

class TestSessions:
    def test_app_change_emits_one_activity(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CODE, _at(20))
        tracker.process_sample(CHROME, _at(30))

        assert len(emitted) == 1
        activity = emitted[0]
        assert activity.application_name == "Code"
        assert activity.start_time == T0
        assert activity.end_time == _at(30)
        assert activity.duration == 30
        assert activity.category_id == "work"
        assert activity.is_idle is False
        assert tracker.current_session.app_name == "Chrome"

    def test_counter_change_does_not_split(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(Sample("Mail", "Inbox (3)"), T0)
        tracker.process_sample(Sample("Mail", "Inbox (4)"), _at(20))
        assert emitted == []
        assert tracker.current_session.start_time == T0

    def test_numbered_documents_share_a_session(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(Sample("App", "Doc (1)"), T0)
        tracker.process_sample(Sample("App", "Doc (2)"), _at(1))
        tracker.stop()
        assert emitted == []
        assert tracker.get_stats().activities_discarded == 1

    def test_title_change_splits(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(Sample("Code", "a.py"), T0)
        tracker.process_sample(Sample("Code", "b.py"), _at(15))
        assert [a.window_title for a in emitted] == ["a.py"]

    def test_min_duration_boundary(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CHROME, _at(10))       # exactly the minimum: kept
        tracker.process_sample(SLACK, _at(19))        # 9 seconds: dropped
        assert [a.application_name for a in emitted] == ["Code"]
        assert tracker.get_stats().activities_discarded == 1

    def test_duration_matches_bounds(self):
        tracker, emitted, _ = _make_tracker()
        for i, sample in enumerate([CODE, CHROME, SLACK, CODE]):
            tracker.process_sample(sample, _at(i * 17))
        tracker.stop()
        assert emitted
        for activity in emitted:
            assert activity.duration == (activity.end_time - activity.start_time).total_seconds()

    def test_sample_timestamp_preferred(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(Sample("Code", "x", timestamp=_at(5)), _at(99))
        assert tracker.current_session.start_time == _at(5)

    def test_no_sample_finalizes_session(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(None, _at(20))
        assert [a.duration for a in emitted] == [20]
        assert tracker.current_session is None

    def test_samples_ignored_when_stopped(self):
        tracker, emitted, _ = _make_tracker()
        tracker.stop()
        tracker.process_sample(CODE, T0)
        assert tracker.current_session is None

    def test_current_activity_has_live_duration(self):
        tracker, _, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        snapshot = tracker.get_current_activity(_at(42))
        assert snapshot.duration == 42
        assert snapshot.category_id == "work"


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------

class TestMerging:
    def test_short_gap_merges_into_previous(self):
        merged = []
        tracker, emitted, _ = _make_tracker(on_activity_merged=merged.append)
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CHROME, _at(30))   # Code 0-30 emitted
        tracker.process_sample(CODE, _at(35))     # Chrome 5s dropped
        tracker.process_sample(SLACK, _at(60))    # Code 35-60 merges

        assert len(emitted) == 1
        assert len(merged) == 1
        assert merged[0].id == emitted[0].id
        assert merged[0].end_time == _at(60)
        assert merged[0].duration == 60
        assert tracker.get_stats().activities_merged == 1

    def test_merge_checked_before_min_duration(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CHROME, _at(30))
        tracker.process_sample(CODE, _at(35))
        tracker.process_sample(SLACK, _at(38))    # 3s Code session still merges
        assert tracker.get_stats().activities_merged == 1
        assert tracker.get_stats().total_tracked_time == 38

    def test_gap_at_threshold_does_not_merge(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(None, _at(20))
        tracker.process_sample(CODE, _at(50))     # gap of exactly 30
        tracker.process_sample(None, _at(70))
        assert len(emitted) == 2

    def test_auto_merge_disabled(self):
        tracker, emitted, _ = _make_tracker(settings=TrackerSettings(auto_merge=False))
        tracker.process_sample(CODE, T0)
        tracker.process_sample(None, _at(20))
        tracker.process_sample(CODE, _at(25))
        tracker.process_sample(None, _at(45))
        assert len(emitted) == 2

    def test_coded_activity_not_merged(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(None, _at(20))
        tracker.mark_coded(emitted[0].id)
        tracker.process_sample(CODE, _at(25))
        tracker.process_sample(None, _at(45))
        assert len(emitted) == 2


# ---------------------------------------------------------------------------
# Idle
# ---------------------------------------------------------------------------

class TestIdle:
    def test_idle_after_threshold(self):
        starts, ends = [], []
        idle_seconds = [0.0]
        tracker, emitted, _ = _make_tracker(
            idle_probe=lambda: idle_seconds[0],
            on_idle_start=starts.append, on_idle_end=ends.append,
        )
        tracker.process_sample(CODE, T0)
        tracker.record_user_activity(_at(60))
        idle_seconds[0] = 301.0
        tracker.process_sample(CODE, _at(361))
        idle_seconds[0] = 302.0
        tracker.process_sample(CODE, _at(362))

        assert len(starts) == 1
        assert tracker.state is TrackerState.IDLE
        assert len(emitted) == 1
        assert emitted[0].duration == 60
        assert emitted[0].is_idle is False
        session = tracker.current_session
        assert session.is_idle is True
        assert session.start_time == _at(60)

        idle_seconds[0] = 0.0
        tracker.process_sample(Sample("Code", "other.py"), _at(400))
        assert len(ends) == 1
        assert tracker.state is TrackerState.TRACKING
        idle = emitted[1]
        assert idle.is_idle is True
        assert (idle.application_name, idle.window_title) == ("System", "Idle")
        assert idle.category_confidence == 100
        assert idle.start_time == _at(60)
        assert idle.end_time == _at(400)
        assert tracker.current_session.window_title == "other.py"

    @pytest.mark.parametrize("idle_probe", [None, lambda: None])
    def test_steady_samples_count_as_activity(self, idle_probe):
        tracker, emitted, clock = _make_tracker(
            sampler=MagicMock(return_value=CODE), idle_probe=idle_probe
        )
        for second in range(601):
            tracker.poll_once(_at(second))
        assert tracker.state is TrackerState.TRACKING
        assert emitted == []
        assert tracker.current_session.start_time == T0

        clock.set(600)
        tracker.stop()
        assert [a.duration for a in emitted] == [600]

    def test_idle_not_tracked(self):
        idle_seconds = [0.0]
        tracker, emitted, _ = _make_tracker(
            settings=TrackerSettings(track_idle_time=False),
            idle_probe=lambda: idle_seconds[0],
        )
        tracker.process_sample(CODE, T0)
        idle_seconds[0] = 300.0
        tracker.process_sample(CODE, _at(300))
        assert tracker.state is TrackerState.IDLE
        assert tracker.current_session is None

    def test_idle_probe_drives_activity(self):
        idle_seconds = [0.0]
        tracker, emitted, _ = _make_tracker(idle_probe=lambda: idle_seconds[0])
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CODE, _at(200))
        idle_seconds[0] = 250.0
        tracker.process_sample(CODE, _at(450))    # last input at 200
        assert tracker.state is TrackerState.TRACKING
        idle_seconds[0] = 310.0
        tracker.process_sample(CODE, _at(510))    # still no input since 200
        assert tracker.state is TrackerState.IDLE
        assert tracker.current_session.start_time == _at(200)

    def test_idle_counter_failure_counts_sample_as_activity(self, caplog):
        def probe():
            raise OSError("no idle counter")

        tracker, _, _ = _make_tracker(idle_probe=probe)
        with caplog.at_level(logging.ERROR):
            tracker.process_sample(CODE, T0)
            tracker.process_sample(CODE, _at(300))
        assert "Failed to read idle time" in caplog.text
        assert tracker.state is TrackerState.TRACKING
        assert tracker.current_session.start_time == T0

    def test_no_sample_keeps_idle_session(self):
        tracker, emitted, _ = _make_tracker(idle_probe=lambda: 300.0)
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CODE, _at(300))
        tracker.process_sample(None, _at(320))
        assert tracker.current_session.is_idle is True

    def test_idle_timeout_without_polling(self):
        tracker, emitted, clock = _make_tracker(use_idle_timer=True)
        try:
            tracker.process_sample(CODE, T0)
            clock.set(300)
            tracker._on_idle_timeout()
            assert tracker.state is TrackerState.IDLE
        finally:
            tracker.stop()

    def test_idle_timeout_without_idle_counter_does_not_sample(self):
        sampler = MagicMock(return_value=CODE)
        tracker, emitted, clock = _make_tracker(sampler=sampler, use_idle_timer=True)
        try:
            tracker.process_sample(CODE, T0)
            clock.set(300)
            tracker._on_idle_timeout()
            tracker._on_idle_timeout()
            sampler.assert_not_called()
            assert tracker.state is TrackerState.IDLE
        finally:
            tracker.stop()

    def test_idle_timeout_samples_while_idle(self):
        idle_seconds = [0.0]
        tracker, emitted, clock = _make_tracker(
            sampler=MagicMock(return_value=CODE),
            idle_probe=lambda: idle_seconds[0],
            use_idle_timer=True,
        )
        try:
            tracker.process_sample(CODE, T0)
            clock.set(300)
            idle_seconds[0] = 300.0
            tracker._on_idle_timeout()
            assert tracker.state is TrackerState.IDLE

            clock.set(500)
            idle_seconds[0] = 0.0
            tracker._on_idle_timeout()
            assert tracker.state is TrackerState.TRACKING
            assert tracker.current_session.app_name == "Code"
            assert tracker.current_session.start_time == _at(500)
            assert emitted[-1].is_idle is True
        finally:
            tracker.stop()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_pause_finalizes_synchronously(self):
        tracker, emitted, clock = _make_tracker()
        tracker.process_sample(CODE, T0)
        clock.set(15)
        tracker.pause()
        assert tracker.state is TrackerState.PAUSED
        assert [a.duration for a in emitted] == [15]

    def test_resume_restarts_clock(self):
        tracker, emitted, clock = _make_tracker()
        tracker.pause()
        clock.set(1000)
        tracker.resume()
        assert tracker.state is TrackerState.TRACKING
        tracker.process_sample(CODE, _at(1001))
        assert tracker.state is TrackerState.TRACKING

    def test_stop_finalizes_and_is_idempotent(self):
        tracker, emitted, clock = _make_tracker()
        tracker.process_sample(CODE, T0)
        clock.set(45)
        tracker.stop()
        tracker.stop()
        assert tracker.state is TrackerState.STOPPED
        assert len(emitted) == 1

    def test_status_changes_reported(self):
        states = []
        tracker, _, _ = _make_tracker(on_status_change=states.append)
        tracker.pause()
        tracker.resume()
        tracker.stop()
        assert states == [
            TrackerState.TRACKING,
            TrackerState.PAUSED,
            TrackerState.TRACKING,
            TrackerState.STOPPED,
        ]

    def test_lock_and_unlock(self):
        tracker, emitted, clock = _make_tracker()
        tracker.process_sample(CODE, T0)
        clock.set(30)
        tracker.handle_lock()
        assert tracker.state is TrackerState.PAUSED
        assert tracker.current_session.window_title == "Screen Locked"

        clock.set(100)
        tracker.handle_unlock()
        assert tracker.state is TrackerState.TRACKING
        locked = emitted[1]
        assert locked.is_idle is True
        assert locked.window_title == "Screen Locked"
        assert locked.duration == 70


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------

class TestCategorization:
    def test_manual_override_applies_at_finalize(self):
        engine = _engine()
        tracker, emitted, _ = _make_tracker(engine=engine)
        tracker.process_sample(CODE, T0)
        engine.manual_categorize(tracker.current_session.id, "fun")
        tracker.process_sample(None, _at(20))
        assert emitted[0].category_id == "fun"
        assert emitted[0].category_auto_assigned is False
        assert tracker.get_stats().distracting_time == 20

    def test_deleted_category_applies_at_finalize(self):
        engine = _engine()
        tracker, emitted, _ = _make_tracker(engine=engine)
        tracker.process_sample(CODE, T0)
        engine.delete_category("work")
        tracker.process_sample(None, _at(20))
        assert emitted[0].category_id == UNCATEGORIZED_ID

    def test_auto_categorize_disabled(self):
        tracker, emitted, _ = _make_tracker(settings=TrackerSettings(auto_categorize=False))
        tracker.process_sample(CODE, T0)
        tracker.process_sample(None, _at(20))
        assert emitted[0].category_id == UNCATEGORIZED_ID
        assert emitted[0].category_confidence == 50

    def test_productivity_totals(self):
        tracker, emitted, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(Sample("Game", "level 1"), _at(30))
        tracker.process_sample(None, _at(40))
        stats = tracker.get_stats()
        assert (stats.productive_time, stats.distracting_time) == (30, 10)
        assert stats.productivity_score == 75

    def test_score_leaves_out_uncategorized_time(self):
        tracker, _, _ = _make_tracker()
        tracker.process_sample(CODE, T0)
        tracker.process_sample(Sample("Game", "level 1"), _at(30))
        tracker.process_sample(CHROME, _at(40))
        tracker.process_sample(None, _at(80))
        stats = tracker.get_stats()
        assert stats.total_tracked_time == 80
        assert stats.productivity_score == 75

    def test_emitted_session_not_retained_by_engine(self):
        engine = _engine()
        tracker, emitted, _ = _make_tracker(engine=engine)
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CHROME, _at(20))
        assert engine.get_categorization(emitted[0].id) is None
        assert engine.get_categorization(tracker.current_session.id) is not None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TestUpdateSettings:
    @pytest.mark.parametrize("changes", [
        {"bogus": 1},
        {"idle_threshold": "abc"},
        {"idle_threshold": -1},
        {"poll_interval": 0},
        {"auto_merge": "yes"},
        {"merge_threshold": True},
    ])
    def test_invalid_changes_rejected(self, changes):
        tracker, _, _ = _make_tracker()
        result = tracker.update_settings(**changes)
        assert result.success is False
        assert result.error
        assert tracker.settings == TrackerSettings()

    def test_idle_threshold_applies_immediately(self):
        tracker, _, _ = _make_tracker(idle_probe=lambda: 60.0)
        assert tracker.update_settings(idle_threshold=60).success
        tracker.process_sample(CODE, T0)
        tracker.process_sample(CODE, _at(60))
        assert tracker.state is TrackerState.IDLE

    def test_settings_are_copied(self):
        settings = TrackerSettings()
        tracker, _, _ = _make_tracker(settings=settings)
        tracker.update_settings(min_activity_duration=0)
        assert settings.min_activity_duration == 10


# ---------------------------------------------------------------------------
# Sampler and callback failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_sampler_exception_logged(self, caplog):
        sampler = MagicMock(side_effect=RuntimeError("boom"))
        tracker, emitted, _ = _make_tracker(sampler=sampler)
        with caplog.at_level(logging.ERROR):
            tracker.poll_once(T0)
        assert "Failed to get active window" in caplog.text
        assert tracker.state is TrackerState.TRACKING

    def test_callback_exception_swallowed(self, caplog):
        engine = _engine()
        tracker = SessionTracker(
            MagicMock(return_value=None), engine,
            MagicMock(side_effect=ValueError("sink down")),
            clock=FakeClock(), polling=False,
        )
        tracker.start()
        tracker.process_sample(CODE, T0)
        with caplog.at_level(logging.ERROR):
            tracker.process_sample(CHROME, _at(20))
        assert "Tracker callback" in caplog.text
        assert tracker.current_session.app_name == "Chrome"
        assert tracker.get_stats().activities_logged == 1

    def test_async_sampler(self):
        async def sampler():
            return CODE

        tracker, _, _ = _make_tracker(sampler=sampler)
        tracker.poll_once(T0)
        assert tracker.current_session.app_name == "Code"
