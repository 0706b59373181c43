"""Per-call state of a remote procedure call."""

from __future__ import annotations

from typing import Callable


class Controller:
    """Tracks whether a call failed or was cancelled, and why."""

    def __init__(self) -> None:
        self._failed = False
        self._error_text = ""
        self._canceled = False
        self._cancel_callbacks: list[Callable[[], None]] = []

    def reset(self) -> None:
        """Clear the failure and cancellation state."""
        self._failed = False
        self._error_text = ""
        self._canceled = False
        self._cancel_callbacks.clear()

    def failed(self) -> bool:
        """Return whether the call failed."""
        return self._failed

    def error_text(self) -> str:
        """Return the reason the call failed, or an empty string."""
        return self._error_text

    def set_failed(self, reason: str) -> None:
        """Mark the call as failed for ``reason``."""
        self._failed = True
        self._error_text = reason

    def start_cancel(self) -> None:
        """Mark the call as cancelled and run the registered callbacks once."""
        if self._canceled:
            return
        self._canceled = True
        callbacks, self._cancel_callbacks = self._cancel_callbacks, []
        for callback in callbacks:
            callback()

    def is_canceled(self) -> bool:
        """Return whether cancellation was requested."""
        return self._canceled

    def notify_on_cancel(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the call is cancelled, at once if it already is."""
        if self._canceled:
            callback()
        else:
            self._cancel_callbacks.append(callback)