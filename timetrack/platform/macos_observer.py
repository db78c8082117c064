"""Event-driven macOS window observer using NSWorkspace notifications.

Delivers samples to a SessionTracker only when the foreground window
changes: app activations arrive as NSWorkspace notifications, and a
lightweight periodic check catches tab and document switches that do
not activate a different app.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from timetrack.core.models import Sample
from timetrack.platform.base import WindowProvider

logger = logging.getLogger(__name__)


class MacOSWindowObserver:
    """Watches the foreground window and calls *on_change* with each new Sample.

    pyobjc is optional: without it only the periodic check runs.
    """

    def __init__(
        self,
        provider: WindowProvider,
        on_change: Callable[[Sample, datetime], None],
        title_check_interval: float = 3.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._provider = provider
        self._on_change = on_change
        self._title_check_interval = title_check_interval
        self._clock = clock
        self._stop_event = threading.Event()
        self._last_key: Optional[tuple[str, str]] = None
        self._check_lock = threading.Lock()
        self._observer_thread: Optional[threading.Thread] = None
        self._ns_observer = None
        self._ns_notification_center = None

    @property
    def running(self) -> bool:
        return self._observer_thread is not None

    def start(self) -> None:
        """Start observing window changes."""
        self._stop_event.clear()

        if self._setup_ns_observer():
            logger.info("Using NSWorkspace notifications for app switch detection")
        else:
            logger.info("NSWorkspace notifications unavailable, using title checks only")

        self._observer_thread = threading.Thread(
            target=self._title_check_loop, daemon=True, name="timetrack-title-observer"
        )
        self._observer_thread.start()

    def stop(self) -> None:
        """Stop observing."""
        self._stop_event.set()
        self._teardown_ns_observer()
        if self._observer_thread is not None:
            self._observer_thread.join(timeout=5)
            self._observer_thread = None

    def check_now(self) -> None:
        """Sample the foreground window and fire the callback if it changed."""
        with self._check_lock:
            try:
                sample = self._provider.get_active_window()
            except Exception:
                logger.exception("Failed to get active window; skipping this check")
                return

            if sample is None:
                return

            key = (sample.app_name, sample.window_title)
            if key == self._last_key:
                return
            self._last_key = key

        try:
            self._on_change(sample, self._clock())
        except Exception:
            logger.exception("Error in window change callback")

    # ------------------------------------------------------------------
    # NSWorkspace
    # ------------------------------------------------------------------

    def _setup_ns_observer(self) -> bool:
        """Register for NSWorkspaceDidActivateApplicationNotification."""
        try:
            from AppKit import NSWorkspace
            from Foundation import NSObject
            import objc
        except ImportError:
            logger.debug("AppKit/pyobjc not available for NSWorkspace notifications")
            return False

        try:
            class _AppSwitchHandler(NSObject):
                observer_ref = None

                def appDidActivate_(self, notification):
                    if self.observer_ref is not None:
                        self.observer_ref.check_now()

            handler = _AppSwitchHandler.alloc().init()
            handler.observer_ref = self

            nc = NSWorkspace.sharedWorkspace().notificationCenter()
            nc.addObserver_selector_name_object_(
                handler,
                objc.selector(handler.appDidActivate_, signature=b"v@:@"),
                "NSWorkspaceDidActivateApplicationNotification",
                None,
            )
            self._ns_observer = handler
            self._ns_notification_center = nc
        except Exception:
            logger.exception("Failed to set up NSWorkspace observer")
            return False

        threading.Thread(
            target=self._run_loop, daemon=True, name="timetrack-nsrunloop"
        ).start()
        return True

    def _run_loop(self) -> None:
        from AppKit import NSDate, NSDefaultRunLoopMode, NSRunLoop

        while not self._stop_event.is_set():
            NSRunLoop.currentRunLoop().runMode_beforeDate_(
                NSDefaultRunLoopMode,
                NSDate.dateWithTimeIntervalSinceNow_(0.5),
            )

    def _teardown_ns_observer(self) -> None:
        if self._ns_observer is None:
            return
        try:
            self._ns_notification_center.removeObserver_(self._ns_observer)
        except Exception:
            logger.exception("Failed to remove NSWorkspace observer")
        self._ns_observer = None
        self._ns_notification_center = None

    def _title_check_loop(self) -> None:
        """Check the window every interval until stopped (catches tab switches)."""
        self.check_now()
        while not self._stop_event.wait(self._title_check_interval):
            self.check_now()
