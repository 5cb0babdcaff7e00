"""Central state shared by the worker threads."""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from candletrader.core.types import AccountSnapshot, MarketSnapshot


@dataclass(slots=True)
class SnapshotView:
    """Copy of the published snapshots taken under the shared lock."""

    market: MarketSnapshot
    account: AccountSnapshot
    has_market: bool
    has_account: bool


@dataclass(slots=True)
class IterationCounters:
    market: int = 0
    account: int = 0
    gate: int = 0
    trader: int = 0
    logger: int = 0


class SharedState:
    """Snapshots, gating flags and freshness timestamps under one lock and condition.

    ``market``/``account`` and their ``has_*`` flags change together inside one critical
    section. Freshness timestamps come from a monotonic clock and never move backwards.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, wall_clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._wall_clock = wall_clock
        self.lock = threading.Lock()
        self.cond = threading.Condition(self.lock)
        self._market = MarketSnapshot()
        self._account = AccountSnapshot()
        self._has_market = False
        self._has_account = False
        self._stop = threading.Event()
        self.allow_fetch = threading.Event()
        self._ts_lock = threading.Lock()
        self._market_ts: Optional[float] = None
        self._account_ts: Optional[float] = None
        self._last_order_ts: Optional[float] = None
        self.counters = IterationCounters()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def request_stop(self) -> None:
        self._stop.set()
        with self.cond:
            self.cond.notify_all()

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns False when shutdown interrupted the wait."""

        return not self._stop.wait(max(0.0, seconds))

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------
    def _bump(self, current: Optional[float]) -> float:
        now = self._clock()
        return now if current is None else max(current, now)

    def publish_market(self, snapshot: MarketSnapshot) -> None:
        with self.cond:
            self._market = copy.deepcopy(snapshot)
            self._has_market = True
            with self._ts_lock:
                self._market_ts = self._bump(self._market_ts)
            self.cond.notify_all()

    def publish_account(self, snapshot: AccountSnapshot) -> None:
        with self.cond:
            self._account = copy.deepcopy(snapshot)
            self._has_account = True
            with self._ts_lock:
                self._account_ts = self._bump(self._account_ts)
            self.cond.notify_all()

    def read(self) -> SnapshotView:
        with self.lock:
            return SnapshotView(
                market=copy.deepcopy(self._market),
                account=copy.deepcopy(self._account),
                has_market=self._has_market,
                has_account=self._has_account,
            )

    @property
    def has_market(self) -> bool:
        with self.lock:
            return self._has_market

    @property
    def has_account(self) -> bool:
        with self.lock:
            return self._has_account

    def wait_for_data(self, timeout: float, *, slice_seconds: float = 1.0) -> bool:
        """Block until both snapshots exist, shutdown, or ``timeout`` elapses."""

        deadline = self._clock() + max(0.0, timeout)
        with self.cond:
            while not (self._has_market and self._has_account):
                if self._stop.is_set():
                    return False
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False
                self.cond.wait(min(slice_seconds, remaining))
            return True

    # ------------------------------------------------------------------
    # Timestamps
    # ------------------------------------------------------------------
    @property
    def market_data_timestamp(self) -> Optional[float]:
        with self._ts_lock:
            return self._market_ts

    @property
    def account_data_timestamp(self) -> Optional[float]:
        with self._ts_lock:
            return self._account_ts

    def market_data_age(self) -> Optional[float]:
        ts = self.market_data_timestamp
        return None if ts is None else max(0.0, self._clock() - ts)

    @property
    def last_order_timestamp(self) -> Optional[float]:
        with self._ts_lock:
            return self._last_order_ts

    def mark_order(self, when: Optional[float] = None) -> None:
        with self._ts_lock:
            self._last_order_ts = when if when is not None else self._wall_clock()

    def seconds_since_last_order(self, now: Optional[float] = None) -> Optional[float]:
        with self._ts_lock:
            ts = self._last_order_ts
        if ts is None:
            return None
        now = now if now is not None else self._wall_clock()
        return max(0.0, now - ts)


__all__ = ["IterationCounters", "SharedState", "SnapshotView"]
