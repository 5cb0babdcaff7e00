"""Long-lived polling threads: market data, account, session gate, trader, log drain."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from candletrader.core.config import SystemConfig
from candletrader.core.connectivity import ConnectionStatus, ConnectivityManager
from candletrader.core.errors import ProviderError
from candletrader.core.logging import LoggingContext
from candletrader.core.market_hours import MarketSession
from candletrader.services.runtime.countdown import sleep_with_countdown
from candletrader.services.runtime.monitor import HealthMonitor
from candletrader.services.runtime.state import SharedState

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollingWorker(threading.Thread):
    """Runs :meth:`run_once` until shutdown, sleeping ``interval`` seconds between iterations.

    Exceptions never escape an iteration; they are logged and the loop continues.
    """

    role = "worker"
    counter_name = ""
    tag = "WORKER"

    def __init__(
        self,
        config: SystemConfig,
        state: SharedState,
        *,
        interval: float,
        logging_ctx: Optional[LoggingContext] = None,
        monitor: Optional[HealthMonitor] = None,
    ) -> None:
        settings = config.thread_settings(self.role)
        super().__init__(name=settings.name or self.role, daemon=False)
        self.config = config
        self.state = state
        self.interval = interval
        self.logging_ctx = logging_ctx
        self.monitor = monitor
        self.settings = settings
        self.iterations = 0

    def run(self) -> None:
        if self.logging_ctx is not None:
            self.logging_ctx.set_thread_tag(self.tag)
        log.info(
            "worker.started",
            extra={
                "worker": self.role,
                "priority": self.settings.priority,
                "cpu_affinity": self.settings.cpu_affinity if self.settings.use_cpu_affinity else None,
            },
        )
        while self.state.running:
            try:
                self.run_once()
            except ProviderError as exc:
                log.warning("worker.provider_error", extra={"worker": self.role, "kind": exc.kind.value, "error": str(exc)})
                self._record_error()
            except Exception:  # noqa: BLE001 - keep the loop alive
                log.exception("worker.iteration_failed", extra={"worker": self.role})
                self._record_error()
            self.iterations += 1
            self._count()
            if not self.state.running:
                break
            self.pause()
        self.on_stop()
        log.info("worker.stopped", extra={"worker": self.role, "iterations": self.iterations})

    def _record_error(self) -> None:
        if self.monitor is not None:
            self.monitor.record_error(self.role)

    def _count(self) -> None:
        counters = self.state.counters
        if hasattr(counters, self.counter_name):
            setattr(counters, self.counter_name, getattr(counters, self.counter_name) + 1)
        if self.monitor is not None:
            self.monitor.record_iteration(self.role)

    def pause(self) -> None:
        self.state.sleep(self.interval)

    def run_once(self) -> None:  # pragma: no cover - interface definition
        raise NotImplementedError

    def on_stop(self) -> None:
        return None


class MarketWorker(PollingWorker):
    role = "market_data"
    tag = "MARKET"
    counter_name = "market"

    def __init__(self, config: SystemConfig, state: SharedState, market_data: Any, **kwargs: Any) -> None:
        super().__init__(config, state, interval=config.timing.market_data_thread_polling_interval_seconds, **kwargs)
        self.market_data = market_data

    def run_once(self) -> None:
        if not self.state.allow_fetch.is_set():
            log.debug("market.fetch_gated")
            return
        processed, bars = self.market_data.fetch_and_process()
        if processed is None:
            return
        self.state.publish_market(processed.market)
        market = processed.market
        log.debug("market.snapshot.published", extra={"atr": market.atr, "avg_atr": market.avg_atr, "avg_vol": market.avg_vol})
        if self.logging_ctx is not None and bars:
            self.logging_ctx.bars.log_bar(
                self.config.symbol, bars[-1], atr=market.atr, avg_atr=market.avg_atr, avg_vol=market.avg_vol
            )


class AccountWorker(PollingWorker):
    role = "account_data"
    tag = "ACCOUNT"
    counter_name = "account"

    def __init__(self, config: SystemConfig, state: SharedState, account_manager: Any, **kwargs: Any) -> None:
        super().__init__(config, state, interval=config.timing.account_data_thread_polling_interval_seconds, **kwargs)
        self.account_manager = account_manager

    def run_once(self) -> None:
        snapshot = self.account_manager.fetch_account_snapshot()
        self.state.publish_account(snapshot)
        log.debug(
            "account.snapshot.published",
            extra={"equity": snapshot.equity, "position_qty": snapshot.pos_details.qty, "open_orders": snapshot.open_orders},
        )


class GateWorker(PollingWorker):
    """Opens ``allow_fetch`` around the session and flattens positions in the close grace window."""

    role = "market_gate"
    tag = "GATE"
    counter_name = "gate"

    def __init__(
        self,
        config: SystemConfig,
        state: SharedState,
        api: Any,
        connectivity: ConnectivityManager,
        *,
        session: Optional[MarketSession] = None,
        coordinator: Any = None,
        clock: Callable[[], datetime] = _utcnow,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, state, interval=config.timing.market_gate_thread_polling_interval_seconds, **kwargs)
        self.api = api
        self.connectivity = connectivity
        self.session = session or MarketSession(config.session)
        self.coordinator = coordinator
        self._clock = clock
        self._last_status: Optional[ConnectionStatus] = None

    def fetch_allowed(self, now: datetime) -> bool:
        if self.config.is_crypto:
            return True
        timing = self.config.timing
        in_window = self.session.within_window(
            now,
            pre_open_minutes=timing.pre_market_open_buffer_minutes,
            post_close_minutes=timing.post_market_close_buffer_minutes,
        )
        if in_window:
            return True
        try:
            return bool(self.api.is_market_open(self.config.symbol))
        except ProviderError as exc:
            log.warning("gate.clock_unavailable", extra={"error": str(exc)})
            return False

    def run_once(self) -> None:
        now = self._clock()
        allowed = self.fetch_allowed(now)
        if allowed != self.state.allow_fetch.is_set():
            log.info("gate.allow_fetch", extra={"allowed": allowed})
        if allowed:
            self.state.allow_fetch.set()
        else:
            self.state.allow_fetch.clear()

        status = self.connectivity.status
        if status != self._last_status:
            if self._last_status is not None:
                log.warning(
                    "gate.connectivity_changed",
                    extra={"previous": self._last_status.value, "current": status.value, "detail": self.connectivity.status_string()},
                )
                if status is not ConnectionStatus.HEALTHY and self.monitor is not None:
                    self.monitor.record_connectivity_issue()
            self._last_status = status

        if self.config.is_crypto or self.coordinator is None:
            return
        if self.session.in_close_grace(now, grace_minutes=self.config.timing.market_close_grace_period_minutes):
            self.coordinator.handle_market_close()


class TraderWorker(PollingWorker):
    role = "trader_decision"
    tag = "TRADER"
    counter_name = "trader"

    def __init__(self, config: SystemConfig, state: SharedState, coordinator: Any, **kwargs: Any) -> None:
        super().__init__(config, state, interval=config.timing.trader_decision_thread_polling_interval_seconds, **kwargs)
        self.coordinator = coordinator
        self.last_outcome: Optional[str] = None

    def run_once(self) -> None:
        self.last_outcome = self.coordinator.run_cycle(self.iterations + 1)
        if self.monitor is not None:
            self.monitor.maybe_report(connectivity=self.coordinator.connectivity.status_string())

    def pause(self) -> None:
        status = self.logging_ctx.inline_status if self.logging_ctx is not None else None
        sleep_with_countdown(
            self.interval,
            stop_event=self.state.stop_event,
            refresh=self.config.timing.countdown_display_refresh_interval_seconds,
            status=status,
        )
        if self.logging_ctx is not None:
            self.logging_ctx.end_inline()


class LogWorker(PollingWorker):
    """Drains the logging queue to the console and the text log."""

    role = "logging"
    tag = "LOG"
    counter_name = "logger"

    def __init__(self, config: SystemConfig, state: SharedState, logging_ctx: LoggingContext, **kwargs: Any) -> None:
        super().__init__(
            config,
            state,
            interval=config.timing.logging_thread_polling_interval_seconds,
            logging_ctx=logging_ctx,
            **kwargs,
        )
        self.sink = logging_ctx

    def run_once(self) -> None:
        self.sink.drain(self.interval)

    def pause(self) -> None:
        # drain already blocked for up to one interval
        return None

    def on_stop(self) -> None:
        self.sink.flush()


__all__ = [
    "AccountWorker",
    "GateWorker",
    "LogWorker",
    "MarketWorker",
    "PollingWorker",
    "TraderWorker",
]
