"""Cooperative cancellation shared by every blocking step of a pass."""

from __future__ import annotations

import signal
import threading

from .errors import RunCancelled


def raise_if_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelled("Run cancelled")


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """Set the event on SIGTERM so the current pass stops at its next checkpoint."""

    def _handler(signum, frame):  # noqa: ARG001
        cancel_event.set()

    signal.signal(signal.SIGTERM, _handler)
