"""Idle detection.

Two flavours:
- ``IdleDetector`` compares the last user-activity instant against the
  current time on every tracker tick. Transitions are edge-triggered.
- ``IdleTimer`` fires a callback after a period without ``touch()``,
  for sources that only deliver activity events.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from timetrack.core.models import IdleTransition, IdleTransitionKind

logger = logging.getLogger(__name__)

IdleListener = Callable[[IdleTransition], None]


class IdleDetector:
    """Tracks the last user-activity instant and reports idle edges."""

    def __init__(self, threshold_seconds: float, now: datetime) -> None:
        self._threshold = _check_threshold(threshold_seconds)
        self.last_activity_time = now
        self.is_idle = False
        self.idle_started_at: Optional[datetime] = None
        self._listeners: list[IdleListener] = []

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._threshold = _check_threshold(value)

    def add_listener(self, listener: IdleListener) -> None:
        self._listeners.append(listener)

    def record_activity(self, at: datetime) -> Optional[IdleTransition]:
        """Register user activity at *at*; returns ``idle_end`` if the user was idle.

        Timestamps not newer than the last recorded activity are ignored.
        """
        if at <= self.last_activity_time:
            return None
        self.last_activity_time = at
        if not self.is_idle:
            return None

        started = self.idle_started_at or self.last_activity_time
        transition = IdleTransition(
            kind=IdleTransitionKind.IDLE_END,
            started_at=started,
            at=at,
            idle_seconds=max(0.0, (at - started).total_seconds()),
        )
        self.is_idle = False
        self.idle_started_at = None
        self._notify(transition)
        return transition

    def check(self, now: datetime) -> Optional[IdleTransition]:
        """Return ``idle_start`` the first time the threshold is reached."""
        if self.is_idle:
            return None
        elapsed = (now - self.last_activity_time).total_seconds()
        if elapsed < self._threshold:
            return None

        self.is_idle = True
        self.idle_started_at = self.last_activity_time
        transition = IdleTransition(
            kind=IdleTransitionKind.IDLE_START,
            started_at=self.last_activity_time,
            at=now,
            idle_seconds=elapsed,
        )
        self._notify(transition)
        return transition

    def reset(self, now: datetime) -> None:
        """Forget any idle period and restart the activity clock at *now*."""
        self.last_activity_time = now
        self.is_idle = False
        self.idle_started_at = None

    def _notify(self, transition: IdleTransition) -> None:
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception:
                logger.exception("Idle listener failed for %s", transition.kind.value)


class IdleTimer:
    """Calls *on_timeout* once *threshold_seconds* pass without a ``touch()``."""

    def __init__(self, threshold_seconds: float, on_timeout: Callable[[], None]) -> None:
        self._threshold = _check_threshold(threshold_seconds)
        self._on_timeout = on_timeout
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._threshold = _check_threshold(value)
        with self._lock:
            running = self._timer is not None
        if running:
            self.touch()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._timer is not None

    def touch(self, delay: Optional[float] = None) -> None:
        """Restart the countdown, from *delay* seconds if given, else the threshold."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(
                self._threshold if delay is None else delay, self._fire
            )
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self._on_timeout()
        except Exception:
            logger.exception("Idle timeout callback failed")


def _check_threshold(value: float) -> float:
    if value < 0:
        raise ValueError(f"Idle threshold must not be negative: {value}")
    return value
