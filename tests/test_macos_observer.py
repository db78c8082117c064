"""Unit tests for MacOSWindowObserver.

pyobjc is never required: NSWorkspace setup is patched out where it matters.
"""

import logging
from datetime import datetime
from unittest.mock import MagicMock, patch

from timetrack.core.models import Sample
from timetrack.platform.base import WindowProvider
from timetrack.platform.macos_observer import MacOSWindowObserver

T0 = datetime(2025, 1, 15, 9, 0, 0)


def _make_observer(*samples, on_change=None):
    provider = MagicMock(spec=WindowProvider)
    provider.get_active_window.side_effect = list(samples)
    on_change = on_change or MagicMock()
    observer = MacOSWindowObserver(
        provider, on_change, title_check_interval=60, clock=lambda: T0
    )
    return observer, provider, on_change


class TestCheckNow:
    def test_fires_on_first_sample(self):
        sample = Sample("Finder", "Downloads")
        observer, _, on_change = _make_observer(sample)
        observer.check_now()
        on_change.assert_called_once_with(sample, T0)

    def test_unchanged_window_not_reported(self):
        observer, _, on_change = _make_observer(
            Sample("Finder", "Downloads"), Sample("Finder", "Downloads"),
        )
        observer.check_now()
        observer.check_now()
        assert on_change.call_count == 1

    def test_title_change_reported(self):
        observer, _, on_change = _make_observer(
            Sample("Safari", "Apple"), Sample("Safari", "GitHub"),
        )
        observer.check_now()
        observer.check_now()
        assert on_change.call_count == 2

    def test_no_window_ignored(self):
        observer, _, on_change = _make_observer(None)
        observer.check_now()
        on_change.assert_not_called()

    def test_provider_error_logged(self, caplog):
        observer, provider, on_change = _make_observer()
        provider.get_active_window.side_effect = RuntimeError("osascript hung")
        with caplog.at_level(logging.ERROR):
            observer.check_now()
        assert "Failed to get active window" in caplog.text
        on_change.assert_not_called()

    def test_callback_error_logged(self, caplog):
        on_change = MagicMock(side_effect=ValueError("tracker down"))
        observer, _, _ = _make_observer(Sample("Finder", "x"), on_change=on_change)
        with caplog.at_level(logging.ERROR):
            observer.check_now()
        assert "Error in window change callback" in caplog.text


class TestLifecycle:
    def test_start_checks_immediately_and_stop_joins(self):
        sample = Sample("Finder", "Downloads")
        observer, provider, on_change = _make_observer()
        provider.get_active_window.side_effect = None
        provider.get_active_window.return_value = sample

        with patch.object(MacOSWindowObserver, "_setup_ns_observer", return_value=False):
            observer.start()
            assert observer.running is True
            observer.stop()

        assert observer.running is False
        on_change.assert_called_once_with(sample, T0)

    def test_stop_removes_ns_observer(self):
        observer, _, _ = _make_observer()
        center = MagicMock()
        handler = object()
        observer._ns_observer = handler
        observer._ns_notification_center = center
        observer.stop()
        center.removeObserver_.assert_called_once_with(handler)
        assert observer._ns_observer is None
