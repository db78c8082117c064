"""macOS window sampler using AppleScript (osascript) and ioreg."""

import logging
import re
import subprocess
from typing import Optional

from timetrack.core.models import Sample
from timetrack.platform.base import WindowProvider

logger = logging.getLogger(__name__)

# AppleScript expression for the active tab URL, per browser.
_BROWSER_URL_SCRIPTS = {
    "Google Chrome": "get URL of active tab of front window",
    "Brave Browser": "get URL of active tab of front window",
    "Microsoft Edge": "get URL of active tab of front window",
    "Arc": "get URL of active tab of front window",
    "Safari": "get URL of front document",
}

_HID_IDLE_RE = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')


class MacOSWindowProvider(WindowProvider):
    """Sample the frontmost window and HID idle time on macOS.

    Uses ``osascript`` to run AppleScript for window queries (and the
    active tab URL of supported browsers) and ``ioreg`` to read the HID
    idle time.
    """

    def __init__(self, capture_urls: bool = True) -> None:
        self.capture_urls = capture_urls

    # ------------------------------------------------------------------
    # WindowProvider interface
    # ------------------------------------------------------------------

    def get_active_window(self) -> Optional[Sample]:
        """Return the frontmost application and window title as a Sample.

        Returns ``None`` when the information cannot be retrieved (e.g.
        no windows open, permission denied, or subprocess error).
        """
        app_name = self._get_frontmost_app()
        if app_name is None:
            return None

        # Some apps do not expose a window title; fall back to the app name.
        window_title = self._get_window_title(app_name) or app_name

        url = None
        if self.capture_urls and app_name in _BROWSER_URL_SCRIPTS:
            url = self._get_browser_url(app_name)

        return Sample(app_name=app_name, window_title=window_title, url=url)

    def get_idle_seconds(self) -> Optional[float]:
        """Query ``ioreg`` for the HID idle time and return it in seconds.

        The HID idle time is reported in nanoseconds.  Returns ``None``
        when the value cannot be determined.
        """
        try:
            result = subprocess.run(
                ["ioreg", "-c", "IOHIDSystem"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as exc:
            logger.debug("ioreg execution failed: %s", exc)
            return None

        if result.returncode != 0:
            logger.debug("ioreg returned %d", result.returncode)
            return None

        match = _HID_IDLE_RE.search(result.stdout)
        if match is None:
            logger.debug("HIDIdleTime not found in ioreg output")
            return None
        return int(match.group(1)) / 1_000_000_000

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run_osascript(self, script: str) -> Optional[str]:
        """Execute an AppleScript snippet and return stripped stdout, or None."""
        try:
            result = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as exc:
            logger.debug("osascript execution failed: %s", exc)
            return None

        if result.returncode != 0:
            logger.debug("osascript returned %d: %s", result.returncode, result.stderr.strip())
            return None
        return result.stdout.strip() or None

    def _get_frontmost_app(self) -> Optional[str]:
        return self._run_osascript(
            'tell application "System Events" to get name of first '
            "application process whose frontmost is true"
        )

    def _get_window_title(self, app_name: str) -> Optional[str]:
        """Return the front window title of *app_name*.

        Electron apps and some browsers only answer one of these queries,
        so they are tried in turn.
        """
        scripts = (
            'tell application "System Events" to get name of front window '
            "of first application process whose frontmost is true",
            'tell application "System Events"\n'
            "  set fp to first application process whose frontmost is true\n"
            '  return value of attribute "AXTitle" of first window of fp\n'
            "end tell",
            f'tell application "{app_name}"\n'
            "  if (count of windows) > 0 then return name of front window\n"
            "end tell",
        )
        for script in scripts:
            title = self._run_osascript(script)
            if title:
                return title
        return None

    def _get_browser_url(self, app_name: str) -> Optional[str]:
        expression = _BROWSER_URL_SCRIPTS[app_name]
        return self._run_osascript(f'tell application "{app_name}" to {expression}')
