"""In-process health counters reported periodically to the log."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, Optional

log = logging.getLogger(__name__)


class HealthMonitor:
    """Aggregates order outcomes, data freshness misses and connectivity issues."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.enabled = enabled
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._started = clock()
        self._last_report: Optional[float] = None
        self._orders_ok = 0
        self._orders_failed = 0
        self._stale_data = 0
        self._connectivity_issues = 0
        self._iterations: Dict[str, int] = defaultdict(int)
        self._errors: Dict[str, int] = defaultdict(int)

    def record_order(self, accepted: bool) -> None:
        with self._lock:
            if accepted:
                self._orders_ok += 1
            else:
                self._orders_failed += 1

    def record_stale_data(self) -> None:
        with self._lock:
            self._stale_data += 1

    def record_connectivity_issue(self) -> None:
        with self._lock:
            self._connectivity_issues += 1

    def record_iteration(self, worker: str) -> None:
        with self._lock:
            self._iterations[worker] += 1

    def record_error(self, worker: str) -> None:
        with self._lock:
            self._errors[worker] += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            total_orders = self._orders_ok + self._orders_failed
            return {
                "uptime_seconds": round(self._clock() - self._started, 1),
                "orders_ok": self._orders_ok,
                "orders_failed": self._orders_failed,
                "order_success_rate": (self._orders_ok / total_orders) if total_orders else None,
                "stale_data": self._stale_data,
                "connectivity_issues": self._connectivity_issues,
                "iterations": dict(self._iterations),
                "errors": dict(self._errors),
            }

    def maybe_report(self, **extra: Any) -> bool:
        """Log a health summary when the reporting interval has elapsed."""

        if not self.enabled:
            return False
        now = self._clock()
        with self._lock:
            if self._last_report is not None and now - self._last_report < self.interval_seconds:
                return False
            self._last_report = now
        self.report(**extra)
        return True

    def report(self, **extra: Any) -> Dict[str, Any]:
        payload = self.snapshot()
        payload.update(extra)
        log.info("health.report", extra=payload)
        return payload


__all__ = ["HealthMonitor"]
