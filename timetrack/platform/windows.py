"""Windows window sampler using ctypes with user32.dll and kernel32.dll."""

import ctypes
import ctypes.wintypes
import logging
from typing import Optional

from timetrack.core.models import Sample
from timetrack.platform.base import WindowProvider

logger = logging.getLogger(__name__)

# Buffer size for window title and image path retrieval.
_BUFFER_SIZE = 512

PROCESS_QUERY_LIMITED_INFORMATION = 0x1000


class LASTINPUTINFO(ctypes.Structure):
    """Win32 LASTINPUTINFO structure for idle detection."""
    _fields_ = [
        ("cbSize", ctypes.wintypes.UINT),
        ("dwTime", ctypes.wintypes.DWORD),
    ]


class WindowsWindowProvider(WindowProvider):
    """Sample the foreground window and input idle time on Windows.

    Uses ``ctypes`` with ``user32.dll`` for window queries and
    ``GetLastInputInfo`` / ``GetTickCount`` for idle time.
    """

    def __init__(self) -> None:
        try:
            self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
            self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        except (AttributeError, OSError) as exc:
            logger.warning("Win32 DLLs unavailable: %s", exc)
            self._user32 = None
            self._kernel32 = None

    # ------------------------------------------------------------------
    # WindowProvider interface
    # ------------------------------------------------------------------

    def get_active_window(self) -> Optional[Sample]:
        """Return the foreground window as a Sample.

        Returns ``None`` when the information cannot be retrieved.
        """
        if self._user32 is None:
            return None

        try:
            hwnd = self._user32.GetForegroundWindow()
            if not hwnd:
                return None

            window_title = self._get_window_title(hwnd)
            if not window_title:
                return None

            process_path = self._get_process_path(hwnd)
            app_name = _app_name_from_path(process_path) if process_path else window_title

            return Sample(
                app_name=app_name,
                window_title=window_title,
                process_path=process_path,
            )
        except OSError as exc:
            logger.debug("Failed to get active window: %s", exc)
            return None

    def get_idle_seconds(self) -> Optional[float]:
        """Return seconds since the last keyboard or mouse input."""
        if self._user32 is None or self._kernel32 is None:
            return None

        try:
            lii = LASTINPUTINFO()
            lii.cbSize = ctypes.sizeof(LASTINPUTINFO)

            if not self._user32.GetLastInputInfo(ctypes.byref(lii)):
                logger.debug("GetLastInputInfo failed")
                return None

            current_tick = self._kernel32.GetTickCount()
            idle_ms = current_tick - lii.dwTime

            # Tick count wraps around every ~49.7 days.
            if idle_ms < 0:
                idle_ms += 0xFFFFFFFF + 1

            return idle_ms / 1000.0
        except OSError as exc:
            logger.debug("Idle time query failed: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_window_title(self, hwnd: int) -> Optional[str]:
        """Retrieve the title of the given window handle."""
        buf = ctypes.create_unicode_buffer(_BUFFER_SIZE)
        length = self._user32.GetWindowTextW(hwnd, buf, _BUFFER_SIZE)
        if length > 0:
            return buf.value
        return None

    def _get_process_path(self, hwnd: int) -> Optional[str]:
        """Retrieve the executable path of the process owning the window."""
        pid = ctypes.wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        if pid.value == 0:
            return None

        handle = self._kernel32.OpenProcess(
            PROCESS_QUERY_LIMITED_INFORMATION, False, pid.value
        )
        if not handle:
            return None

        try:
            buf = ctypes.create_unicode_buffer(_BUFFER_SIZE)
            buf_size = ctypes.wintypes.DWORD(_BUFFER_SIZE)
            success = self._kernel32.QueryFullProcessImageNameW(
                handle, 0, buf, ctypes.byref(buf_size)
            )
            if success and buf.value:
                return buf.value
            return None
        finally:
            self._kernel32.CloseHandle(handle)


def _app_name_from_path(path: str) -> str:
    """``C:\\Program Files\\Slack\\slack.exe`` -> ``slack``."""
    sep_idx = max(path.rfind("\\"), path.rfind("/"))
    name = path[sep_idx + 1:] if sep_idx >= 0 else path
    if name.lower().endswith(".exe"):
        name = name[:-4]
    return name
