"""Interruptible sleeps with an inline console countdown."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


def format_remaining(seconds: float) -> str:
    total = max(0, int(round(seconds)))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


def sleep_with_countdown(
    seconds: float,
    *,
    stop_event: threading.Event,
    refresh: float = 1.0,
    status: Optional[Callable[[str], None]] = None,
    label: str = "next cycle in",
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Sleep ``seconds`` in ``refresh`` slices, re-checking ``stop_event`` between slices.

    Returns True when the full duration elapsed and False when shutdown cut it short.
    """

    refresh = refresh if refresh > 0 else 1.0
    deadline = clock() + max(0.0, seconds)
    while True:
        remaining = deadline - clock()
        if remaining <= 0:
            return not stop_event.is_set()
        if status is not None:
            status(f"{label} {format_remaining(remaining)}")
        if stop_event.wait(min(refresh, remaining)):
            return False


__all__ = ["format_remaining", "sleep_with_countdown"]
