"""Abstract base class for platform-specific window samplers."""

from abc import ABC, abstractmethod
from typing import Optional

from timetrack.core.models import Sample


class WindowProvider(ABC):
    """Common interface for sampling the foreground window.

    Each supported platform (macOS, Windows) provides a concrete
    implementation that uses OS-specific APIs behind this interface.
    A provider is callable, so it can be handed to a SessionTracker as
    its sampler directly.
    """

    @abstractmethod
    def get_active_window(self) -> Optional[Sample]:
        """Return a Sample of the foreground window, or None if unavailable."""
        pass

    @abstractmethod
    def get_idle_seconds(self) -> Optional[float]:
        """Return seconds since the last keyboard/mouse input, or None if unknown."""
        pass

    def __call__(self) -> Optional[Sample]:
        return self.get_active_window()
