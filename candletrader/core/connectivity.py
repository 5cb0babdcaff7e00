"""Provider connectivity tracking with exponential retry backoff."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from candletrader.core.config import TimingConfig

log = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    DISCONNECTED = "DISCONNECTED"


@dataclass(slots=True)
class ConnectivityState:
    status: ConnectionStatus = ConnectionStatus.HEALTHY
    consecutive_failures: int = 0
    total_failures: int = 0
    retry_delay_seconds: float = 0.0
    next_retry_time: float = 0.0
    last_success: float | None = None
    last_failure: float | None = None
    last_error: str = ""


class ConnectivityManager:
    """Thread-safe success/failure counters shared by every provider client."""

    def __init__(
        self,
        *,
        degraded_threshold: int = 3,
        disconnected_threshold: int = 5,
        base_retry_delay: float = 1.0,
        max_retry_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.degraded_threshold = degraded_threshold
        self.disconnected_threshold = disconnected_threshold
        self.base_retry_delay = base_retry_delay
        self.max_retry_delay = max_retry_delay
        self.backoff_multiplier = backoff_multiplier
        self._clock = clock
        self._lock = threading.Lock()
        self._state = ConnectivityState(next_retry_time=clock())

    @classmethod
    def from_config(cls, timing: TimingConfig, **kwargs) -> "ConnectivityManager":
        return cls(
            degraded_threshold=timing.connectivity_degraded_threshold,
            disconnected_threshold=timing.connectivity_disconnected_threshold,
            base_retry_delay=timing.connectivity_base_retry_delay_seconds,
            max_retry_delay=timing.connectivity_max_retry_delay_seconds,
            backoff_multiplier=timing.connectivity_backoff_multiplier,
            **kwargs,
        )

    def report_success(self) -> None:
        with self._lock:
            now = self._clock()
            previous = self._state.status
            self._state.status = ConnectionStatus.HEALTHY
            self._state.consecutive_failures = 0
            self._state.retry_delay_seconds = 0.0
            self._state.next_retry_time = now
            self._state.last_success = now
            self._state.last_error = ""
        if previous is not ConnectionStatus.HEALTHY:
            log.info("connectivity.recovered", extra={"previous": previous.value})

    def report_failure(self, reason: str = "") -> None:
        with self._lock:
            now = self._clock()
            state = self._state
            state.consecutive_failures += 1
            state.total_failures += 1
            state.last_failure = now
            state.last_error = reason
            if state.consecutive_failures >= self.disconnected_threshold:
                state.status = ConnectionStatus.DISCONNECTED
            elif state.consecutive_failures >= self.degraded_threshold:
                state.status = ConnectionStatus.DEGRADED
            delay = self.base_retry_delay * self.backoff_multiplier ** state.consecutive_failures
            state.retry_delay_seconds = min(self.max_retry_delay, delay)
            state.next_retry_time = now + state.retry_delay_seconds
            failures = state.consecutive_failures
            status = state.status
        log.warning(
            "connectivity.failure",
            extra={"reason": reason, "consecutive_failures": failures, "status": status.value},
        )

    def should_attempt_connection(self) -> bool:
        with self._lock:
            if self._state.status is ConnectionStatus.HEALTHY:
                return True
            return self._clock() >= self._state.next_retry_time

    def seconds_until_retry(self) -> float:
        with self._lock:
            return max(0.0, self._state.next_retry_time - self._clock())

    @property
    def status(self) -> ConnectionStatus:
        with self._lock:
            return self._state.status

    def status_string(self) -> str:
        return self.status.value

    def is_healthy(self) -> bool:
        return self.status is ConnectionStatus.HEALTHY

    def is_outage(self) -> bool:
        return self.status is ConnectionStatus.DISCONNECTED

    def snapshot(self) -> ConnectivityState:
        with self._lock:
            return replace(self._state)

    def reset(self) -> None:
        with self._lock:
            self._state = ConnectivityState(next_retry_time=self._clock())


__all__ = ["ConnectionStatus", "ConnectivityManager", "ConnectivityState"]
