"""Session tracker for TimeTrack.

Turns a stream of samples into finalized Activities:
- Polling mode: a daemon thread calls the sampler every poll interval.
- Event-driven mode: an observer calls ``process_sample`` on changes.

Both feed the same state machine (stopped / tracking / idle / paused).
Sessions are split on application or normalized-title changes, merged
with the previous Activity across short gaps, and dropped when shorter
than the minimum duration.
"""

import asyncio
import inspect
import logging
import re
import threading
import uuid
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from timetrack.core.idle import IdleDetector, IdleTimer
from timetrack.core.models import (
    UNCATEGORIZED_ID,
    Activity,
    IdleTransition,
    OperationResult,
    Sample,
    Session,
    TrackerSettings,
    TrackerState,
    TrackerStats,
)
from timetrack.core.rules import RuleEngine

logger = logging.getLogger(__name__)

IDLE_APP_NAME = "System"
IDLE_TITLE = "Idle"
LOCKED_TITLE = "Screen Locked"
IDLE_CONFIDENCE = 100.0

Sampler = Callable[[], Union[Optional[Sample], Awaitable[Optional[Sample]]]]
IdleProbe = Callable[[], Optional[float]]

_COUNTER_RE = re.compile(r"\(\d+\)")
_CLOCK_RE = re.compile(r"\d{1,2}:\d{2}(?::\d{2})?")
_SPACE_RE = re.compile(r"\s+")


def normalize_title(title: Optional[str]) -> str:
    """Strip counters like ``(3)`` and clock readings, collapse whitespace, lower-case."""
    if not title:
        return ""
    text = _COUNTER_RE.sub("", title)
    text = _CLOCK_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip().lower()


class SessionTracker:
    """Owns the open Session and emits finalized Activities.

    ``on_activity`` receives every new Activity; ``on_activity_merged``
    receives the replacement when a Session is folded into the previous
    Activity. Callback failures are logged and never stop tracking.
    """

    def __init__(
        self,
        sampler: Sampler,
        rule_engine: RuleEngine,
        on_activity: Callable[[Activity], Any],
        *,
        settings: Optional[TrackerSettings] = None,
        idle_probe: Optional[IdleProbe] = None,
        on_activity_merged: Optional[Callable[[Activity], Any]] = None,
        on_idle_start: Optional[Callable[[IdleTransition], Any]] = None,
        on_idle_end: Optional[Callable[[IdleTransition], Any]] = None,
        on_status_change: Optional[Callable[[TrackerState], Any]] = None,
        source: str = "desktop",
        clock: Callable[[], datetime] = datetime.now,
        use_idle_timer: bool = False,
        polling: bool = True,
    ) -> None:
        self.sampler = sampler
        self.rule_engine = rule_engine
        self.on_activity = on_activity
        self.on_activity_merged = on_activity_merged
        self.on_idle_start = on_idle_start
        self.on_idle_end = on_idle_end
        self.on_status_change = on_status_change
        self.idle_probe = idle_probe
        self.source = source
        self.clock = clock
        self.polling = polling
        self.settings = replace(settings) if settings is not None else TrackerSettings()

        self._lock = threading.RLock()
        self._state = TrackerState.STOPPED
        self._session: Optional[Session] = None
        self._last_activity: Optional[Activity] = None
        self._stats = TrackerStats()
        self._idle = IdleDetector(self.settings.idle_threshold, _trunc(clock()))
        self._idle_timer: Optional[IdleTimer] = None
        if use_idle_timer:
            self._idle_timer = IdleTimer(self.settings.idle_threshold, self._on_idle_timeout)
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def current_session(self) -> Optional[Session]:
        with self._lock:
            return replace(self._session) if self._session is not None else None

    def get_current_activity(self, now: Optional[datetime] = None) -> Optional[Activity]:
        """Snapshot of the open Session as an Activity with its live duration."""
        with self._lock:
            if self._session is None:
                return None
            end = _trunc(now or self.clock())
            return self._build_activity(self._session, max(end, self._session.start_time))

    def get_stats(self) -> TrackerStats:
        with self._lock:
            return replace(self._stats)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin tracking from stopped or paused."""
        with self._lock:
            if self._state not in (TrackerState.STOPPED, TrackerState.PAUSED):
                logger.debug("start() ignored in state %s", self._state.value)
                return
            now = _trunc(self.clock())
            self._finalize(now)
            self._idle.reset(now)
            self._set_state(TrackerState.TRACKING)
            if self._idle_timer is not None:
                self._idle_timer.touch()
        if self.polling:
            self._start_thread()
        logger.info("Tracking started (poll interval=%ss)", self.settings.poll_interval)

    def pause(self) -> None:
        """Finalize the open Session and stop polling."""
        with self._lock:
            if self._state not in (TrackerState.TRACKING, TrackerState.IDLE):
                return
            self._finalize(_trunc(self.clock()))
            self._set_state(TrackerState.PAUSED)
            self._cancel_idle_timer()
        self._stop_thread()
        logger.info("Tracking paused")

    def resume(self) -> None:
        with self._lock:
            if self._state is not TrackerState.PAUSED:
                return
        self.start()

    def stop(self) -> None:
        """Finalize the open Session and stop; the Activity is emitted before returning."""
        with self._lock:
            if self._state is TrackerState.STOPPED:
                return
            self._finalize(_trunc(self.clock()))
            self._set_state(TrackerState.STOPPED)
            self._cancel_idle_timer()
        self._stop_thread()
        logger.info("Tracking stopped")

    def handle_suspend(self) -> None:
        self.pause()

    def handle_resume(self) -> None:
        self.resume()
        self.record_user_activity(self.clock())

    def handle_lock(self) -> None:
        """Pause tracking; time spent locked is kept as an idle Session."""
        self.pause()
        with self._lock:
            if self._state is TrackerState.PAUSED and self.settings.track_idle_time:
                self._open_idle_session(_trunc(self.clock()), LOCKED_TITLE)

    def handle_unlock(self) -> None:
        with self._lock:
            if self._session is not None and self._session.is_idle:
                self._finalize(_trunc(self.clock()))
        self.resume()
        self.record_user_activity(self.clock())

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def update_settings(self, **changes: Any) -> OperationResult:
        """Apply a partial settings update; nothing is applied if any value is invalid."""
        known = {f.name for f in fields(TrackerSettings)}
        unknown = sorted(set(changes) - known)
        if unknown:
            return OperationResult.fail(f"Unknown setting(s): {', '.join(unknown)}")
        for key, value in changes.items():
            current = getattr(self.settings, key)
            if isinstance(current, bool):
                if not isinstance(value, bool):
                    return OperationResult.fail(f"{key} must be true or false")
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return OperationResult.fail(f"{key} must be a number")
            if value < 0:
                return OperationResult.fail(f"{key} must not be negative")
            if key == "poll_interval" and value <= 0:
                return OperationResult.fail("poll_interval must be positive")

        with self._lock:
            old_interval = self.settings.poll_interval
            self.settings = replace(self.settings, **changes)
            self._idle.threshold = self.settings.idle_threshold
            if self._idle_timer is not None:
                self._idle_timer.threshold = self.settings.idle_threshold
            restart = (
                self.settings.poll_interval != old_interval
                and self._thread is not None
            )
        if restart:
            self._stop_thread()
            self._start_thread()
        logger.info("Tracker settings updated: %s", changes)
        return OperationResult.ok()

    # ------------------------------------------------------------------
    # Sample processing
    # ------------------------------------------------------------------

    def poll_once(self, now: Optional[datetime] = None) -> None:
        """Execute a single poll cycle."""
        now = now or self.clock()
        try:
            sample = self.sampler()
            if inspect.isawaitable(sample):
                sample = asyncio.run(_await(sample))
        except Exception:
            logger.exception("Failed to get active window; skipping this cycle")
            sample = None
        self.process_sample(sample, now)

    def process_sample(self, sample: Optional[Sample], now: Optional[datetime] = None) -> None:
        """Feed one observation into the state machine."""
        with self._lock:
            if self._state in (TrackerState.STOPPED, TrackerState.PAUSED):
                return
            at = sample.timestamp if sample is not None and sample.timestamp else now
            at = _trunc(at or self.clock())

            if sample is None:
                logger.debug("No active window; closing the open session")
                if self._session is not None and not self._session.is_idle:
                    self._finalize(at)
                return

            self._feed_activity_signal(at)
            transition = self._idle.check(at)
            if transition is not None:
                self._begin_idle(transition)
            if self._state is TrackerState.IDLE:
                return

            if self._needs_new_session(sample):
                self._finalize(at)
                self._open_session(sample, at)

    def record_user_activity(self, at: Optional[datetime] = None) -> None:
        """Explicit user-activity signal (input event, visibility change)."""
        with self._lock:
            self._signal_activity(_trunc(at or self.clock()))

    def mark_coded(self, activity_id: str) -> None:
        """Record that the host coded an Activity; coded Activities are never merged into."""
        with self._lock:
            if self._last_activity is not None and self._last_activity.id == activity_id:
                self._last_activity = replace(self._last_activity, is_coded=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _feed_activity_signal(self, at: datetime) -> None:
        # A successful sample is user activity unless the OS idle counter gives a reading.
        if self.idle_probe is None or not self._probe_activity(at):
            self._signal_activity(at)

    def _probe_activity(self, at: datetime) -> bool:
        """Signal activity from the OS idle counter; False when it has no reading."""
        try:
            idle_seconds = self.idle_probe()
        except Exception:
            logger.exception("Failed to read idle time; treating the sample as activity")
            return False
        if idle_seconds is None:
            return False
        self._signal_activity(_trunc(at - timedelta(seconds=max(0.0, idle_seconds))))
        return True

    def _signal_activity(self, at: datetime) -> None:
        transition = self._idle.record_activity(at)
        if self._idle_timer is not None and self._state is TrackerState.TRACKING:
            self._idle_timer.touch()
        if transition is None:
            return
        if self._session is not None and self._session.is_idle:
            self._finalize(max(_trunc(transition.at), self._session.start_time))
        if self._state is TrackerState.IDLE:
            self._set_state(TrackerState.TRACKING)
            if self._idle_timer is not None:
                self._idle_timer.touch()
        logger.info("User active again after %.0fs idle", transition.idle_seconds)
        self._notify(self.on_idle_end, transition)

    def _begin_idle(self, transition: IdleTransition) -> None:
        idle_start = _trunc(transition.started_at)
        if self._session is not None:
            idle_start = max(idle_start, self._session.start_time)
            self._finalize(idle_start)
        self._set_state(TrackerState.IDLE)
        if self._idle_timer is not None:
            self._idle_timer.touch(delay=self._idle_poll_delay())
        if self.settings.track_idle_time:
            self._open_idle_session(idle_start, IDLE_TITLE)
        logger.info("User idle since %s", idle_start.isoformat())
        self._notify(self.on_idle_start, transition)

    def _on_idle_timeout(self) -> None:
        # While idle without polling, sample on the timer so a return to the same window is seen.
        # Only the OS idle counter can tell that return apart from an unattended window.
        if self._state is TrackerState.IDLE:
            if self.idle_probe is None:
                return
            self.poll_once()
            with self._lock:
                if self._state is TrackerState.IDLE and self._idle_timer is not None:
                    self._idle_timer.touch(delay=self._idle_poll_delay())
            return
        with self._lock:
            if self._state is not TrackerState.TRACKING:
                return
            now = _trunc(self.clock())
            if self.idle_probe is not None:
                self._probe_activity(now)
            transition = self._idle.check(now)
            if transition is not None:
                self._begin_idle(transition)
            elif self._idle_timer is not None:
                self._idle_timer.touch(delay=1.0)

    def _idle_poll_delay(self) -> float:
        return max(1.0, self.settings.poll_interval)

    def _needs_new_session(self, sample: Sample) -> bool:
        session = self._session
        if session is None or session.is_idle:
            return True
        if session.app_name != sample.app_name:
            return True
        return normalize_title(session.window_title) != normalize_title(sample.window_title)

    def _open_session(self, sample: Sample, at: datetime) -> None:
        session = Session(
            id=uuid.uuid4().hex,
            app_name=sample.app_name,
            window_title=sample.window_title,
            start_time=at,
            process_path=sample.process_path,
            url=sample.url,
        )
        self._session = session
        if self.settings.auto_categorize:
            self.rule_engine.categorize(sample, activity_id=session.id)

    def _open_idle_session(self, at: datetime, title: str) -> None:
        self._session = Session(
            id=uuid.uuid4().hex,
            app_name=IDLE_APP_NAME,
            window_title=title,
            start_time=at,
            is_idle=True,
        )

    def _finalize(self, end: datetime) -> None:
        """Close the open Session at *end*: merge, discard, or emit."""
        session = self._session
        if session is None:
            return
        self._session = None
        end = max(_trunc(end), session.start_time)

        if self._try_merge(session, end):
            return

        duration = int((end - session.start_time).total_seconds())
        if duration < self.settings.min_activity_duration:
            logger.debug(
                "Discarding %ss session %r (minimum %ss)",
                duration, session.window_title, self.settings.min_activity_duration,
            )
            self._stats.activities_discarded += 1
            self.rule_engine.forget(session.id)
            return

        activity = self._build_activity(session, end)
        self.rule_engine.forget(session.id)
        self._last_activity = activity
        self._stats.activities_logged += 1
        self._count_time(activity, activity.duration)
        self._notify(self.on_activity, activity)

    def _try_merge(self, session: Session, end: datetime) -> bool:
        previous = self._last_activity
        if previous is None or not self.settings.auto_merge or previous.is_coded:
            return False
        if previous.is_idle != session.is_idle:
            return False
        if previous.application_name != session.app_name:
            return False
        if normalize_title(previous.window_title) != normalize_title(session.window_title):
            return False
        gap = (session.start_time - previous.end_time).total_seconds()
        if not 0 <= gap < self.settings.merge_threshold:
            return False

        new_end = max(end, previous.end_time)
        merged = replace(
            previous,
            end_time=new_end,
            duration=int((new_end - previous.start_time).total_seconds()),
        )
        self._last_activity = merged
        self._stats.activities_merged += 1
        self._count_time(merged, merged.duration - previous.duration)
        self.rule_engine.forget(session.id)
        logger.debug("Merged session into activity %s (gap %.0fs)", previous.id, gap)
        if self.on_activity_merged is not None:
            self._notify(self.on_activity_merged, merged)
        return True

    def _build_activity(self, session: Session, end: datetime) -> Activity:
        if session.is_idle:
            category_id, auto, confidence = UNCATEGORIZED_ID, True, IDLE_CONFIDENCE
        else:
            result = self.rule_engine.get_categorization(session.id)
            if result is None:
                category_id, auto, confidence = UNCATEGORIZED_ID, True, 50.0
            else:
                category_id, auto, confidence = (
                    result.category_id, result.auto_assigned, result.confidence,
                )
        return Activity(
            id=session.id,
            application_name=session.app_name,
            window_title=session.window_title,
            start_time=session.start_time,
            end_time=end,
            duration=int((end - session.start_time).total_seconds()),
            category_id=category_id,
            category_auto_assigned=auto,
            category_confidence=confidence,
            is_idle=session.is_idle,
            process_path=session.process_path,
            source=self.source,
        )

    def _count_time(self, activity: Activity, seconds: int) -> None:
        if activity.is_idle:
            self._stats.total_idle_time += seconds
            return
        self._stats.total_tracked_time += seconds
        category = self.rule_engine.get_category(activity.category_id)
        if category is None or category.id == UNCATEGORIZED_ID:
            return
        if category.is_productivity:
            self._stats.productive_time += seconds
        else:
            self._stats.distracting_time += seconds

    def _set_state(self, state: TrackerState) -> None:
        if state is self._state:
            return
        self._state = state
        if self.on_status_change is not None:
            self._notify(self.on_status_change, state)

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()

    @staticmethod
    def _notify(callback: Optional[Callable[[Any], Any]], payload: Any) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Tracker callback %r failed", callback)

    # ------------------------------------------------------------------
    # Poll thread
    # ------------------------------------------------------------------

    def _start_thread(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_poll_loop,
                args=(stop_event,),
                name="timetrack-poll",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
        thread.start()

    def _stop_thread(self) -> None:
        with self._lock:
            thread, stop_event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    def _run_poll_loop(self, stop_event: threading.Event) -> None:
        """Poll every interval until *stop_event* is set."""
        while not stop_event.wait(self.settings.poll_interval):
            try:
                self.poll_once()
            except Exception:
                logger.exception("Poll cycle failed")


async def _await(awaitable: Awaitable[Optional[Sample]]) -> Optional[Sample]:
    return await awaitable


def _trunc(value: datetime) -> datetime:
    return value.replace(microsecond=0)
