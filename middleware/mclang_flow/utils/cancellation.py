"""Cooperative cancellation shared by every stage of a run."""

from __future__ import annotations

from typing import Optional
import os
import threading

POLL_INTERVAL_SECONDS = 0.05


class TranslationCancelled(RuntimeError):
    """Raised when a stop request interrupts a wait or an in-flight call."""


class CancellationToken:
    """Process-wide stop signal.

    The token is set either explicitly through :meth:`cancel` (SIGINT handler,
    tests) or by the appearance of a stop-flag file, the same marker-file
    convention the dashboard uses to stop a running pipeline.
    """

    def __init__(self, stop_flag_path: Optional[str] = None):
        self._event = threading.Event()
        self.stop_flag_path = str(stop_flag_path or "").strip()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.stop_flag_path and os.path.exists(self.stop_flag_path):
            self._event.set()
            return True
        return False

    def raise_if_cancelled(self, message: str = "stop_requested") -> None:
        if self.is_cancelled():
            raise TranslationCancelled(message)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True as soon as the token is cancelled."""
        remaining = max(0.0, float(seconds))
        if not self.stop_flag_path:
            return self._event.wait(remaining) or self._event.is_set()
        while remaining > 0:
            step = min(POLL_INTERVAL_SECONDS, remaining)
            if self._event.wait(step):
                return True
            remaining -= step
            if self.is_cancelled():
                return True
        return self.is_cancelled()


def acquire_permit(
    limiter: threading.Semaphore,
    cancel: Optional[CancellationToken],
    *,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> bool:
    """Block on ``limiter`` until a permit is granted or ``cancel`` fires.

    Returns False (and holds no permit) when cancelled while waiting.
    """
    while True:
        if cancel is not None and cancel.is_cancelled():
            return False
        if limiter.acquire(timeout=poll_interval):
            if cancel is not None and cancel.is_cancelled():
                limiter.release()
                return False
            return True
