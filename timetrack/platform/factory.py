"""Sampler selection for the running OS."""

import sys
from typing import Optional

from timetrack.platform.base import WindowProvider

# Platforms whose sampler is driven by window-change events instead of polling.
_EVENT_DRIVEN = {"darwin"}


def create_window_provider(
    capture_urls: bool = True, platform: Optional[str] = None
) -> WindowProvider:
    """Return the WindowProvider for *platform* (defaults to ``sys.platform``).

    Platform modules are imported lazily so that ctypes and AppKit are only
    touched where they exist. Raises ``OSError`` for unsupported platforms.
    """
    platform = platform or sys.platform
    if platform == "darwin":
        from timetrack.platform.macos import MacOSWindowProvider
        return MacOSWindowProvider(capture_urls=capture_urls)

    if platform == "win32":
        from timetrack.platform.windows import WindowsWindowProvider
        return WindowsWindowProvider()

    raise OSError(f"No window sampler for platform {platform!r} (supported: darwin, win32)")


def is_event_driven(platform: Optional[str] = None) -> bool:
    """True when the sampler for *platform* should be driven by an observer."""
    return (platform or sys.platform) in _EVENT_DRIVEN
