"""Deadlines and cancellation for backend calls."""

import threading
import time


class Deadline:
    """Absolute point in time by which an operation must finish."""

    def __init__(self, seconds: float | None):
        """Initialize the deadline.

        Args:
            seconds: Time budget from now, or None for no limit
        """
        self.seconds = seconds
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> float | None:
        """Seconds left, never negative, or None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def bounded(self, seconds: float) -> float:
        """Return the smaller of ``seconds`` and the time remaining."""
        remaining = self.remaining()
        return seconds if remaining is None else min(seconds, remaining)

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()})"


class CancelToken:
    """Flag a caller sets to stop an operation between steps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
