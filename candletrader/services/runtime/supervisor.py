"""Wires the trading components together and owns the worker threads."""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from candletrader.core.config import SystemConfig
from candletrader.core.connectivity import ConnectivityManager
from candletrader.core.errors import ProviderError
from candletrader.core.logging import LoggingContext
from candletrader.core.market_hours import MarketSession
from candletrader.services.account.manager import AccountManager
from candletrader.services.execution.executor import OrderExecutor
from candletrader.services.market.data import MarketDataManager
from candletrader.services.providers.manager import ApiManager
from candletrader.services.risk.engine import RiskManager
from candletrader.services.runtime.monitor import HealthMonitor
from candletrader.services.runtime.state import SharedState
from candletrader.services.runtime.workers import (
    AccountWorker,
    GateWorker,
    LogWorker,
    MarketWorker,
    PollingWorker,
    TraderWorker,
)
from candletrader.services.trading.coordinator import TradingCoordinator

log = logging.getLogger(__name__)


class Supervisor:
    """Builds the component graph, starts five workers and joins them on shutdown."""

    def __init__(
        self,
        config: SystemConfig,
        *,
        api: Any = None,
        logging_ctx: Optional[LoggingContext] = None,
        connectivity: Optional[ConnectivityManager] = None,
        state: Optional[SharedState] = None,
    ) -> None:
        self.config = config
        self.state = state or SharedState()
        self.connectivity = connectivity or ConnectivityManager.from_config(config.timing)
        self.logging_ctx = logging_ctx
        self.api = api if api is not None else ApiManager.from_config(config, self.connectivity)
        self.session = MarketSession(config.session)
        self.monitor = HealthMonitor(
            enabled=config.timing.enable_system_health_monitoring,
            interval_seconds=config.timing.system_health_logging_interval_seconds,
        )
        self.account_manager = AccountManager(
            self.api, config.symbol, cache_duration_seconds=config.timing.account_data_cache_duration_seconds
        )
        self.market_data = MarketDataManager(config, self.api, self.account_manager, self.state)
        self.risk = RiskManager(config.risk, config.timing, self.session, crypto=config.is_crypto)
        self.executor = OrderExecutor(
            config, self.api, self.account_manager, self.state, logging_ctx, monitor=self.monitor
        )
        self.coordinator = TradingCoordinator(
            config,
            self.state,
            self.api,
            self.account_manager,
            self.market_data,
            self.risk,
            self.executor,
            self.connectivity,
            logging_ctx=logging_ctx,
            monitor=self.monitor,
        )
        self.workers: List[PollingWorker] = []
        self._started = False
        self._shutdown_lock = threading.Lock()

    def _build_workers(self) -> List[PollingWorker]:
        common: Dict[str, Any] = {"logging_ctx": self.logging_ctx, "monitor": self.monitor}
        workers: List[PollingWorker] = [
            GateWorker(
                self.config,
                self.state,
                self.api,
                self.connectivity,
                session=self.session,
                coordinator=self.coordinator,
                **common,
            ),
            MarketWorker(self.config, self.state, self.market_data, **common),
            AccountWorker(self.config, self.state, self.account_manager, **common),
            TraderWorker(self.config, self.state, self.coordinator, **common),
        ]
        if self.logging_ctx is not None:
            workers.append(LogWorker(self.config, self.state, self.logging_ctx, monitor=self.monitor))
        return workers

    def read_initial_equity(self) -> float:
        try:
            equity = self.account_manager.fetch_account_equity()
        except ProviderError as exc:
            log.warning("supervisor.initial_equity_unavailable", extra={"error": str(exc)})
            return 0.0
        log.info("supervisor.initial_equity", extra={"equity": equity})
        return equity

    def start(self) -> None:
        if self._started:
            return
        self.coordinator.initial_equity = self.read_initial_equity()
        self.workers = self._build_workers()
        for worker in self.workers:
            worker.start()
        self._started = True
        log.info(
            "supervisor.started",
            extra={"symbol": self.config.symbol, "mode": self.config.trading_mode.mode, "workers": [w.name for w in self.workers]},
        )

    def request_stop(self) -> None:
        self.state.request_stop()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop every worker and wait for it; returns True when all threads joined."""

        with self._shutdown_lock:
            self.state.request_stop()
            alive: List[str] = []
            for worker in self.workers:
                if worker is threading.current_thread():
                    continue
                worker.join(timeout)
                if worker.is_alive():
                    alive.append(worker.name)
            if alive:
                log.error("supervisor.join_timeout", extra={"workers": alive})
            else:
                log.info("supervisor.stopped", extra={"health": self.monitor.snapshot()})
            if self.logging_ctx is not None:
                self.logging_ctx.close()
            return not alive

    def install_signal_handlers(self) -> None:
        def _handle(signum: int, _frame: Any) -> None:
            log.warning("supervisor.signal", extra={"signal": signal.Signals(signum).name})
            self.state.request_stop()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

    def run(self) -> int:
        """Start the workers and block the main thread until shutdown is requested."""

        self.install_signal_handlers()
        self.start()
        try:
            while self.state.running:
                self.state.stop_event.wait(1.0)
        finally:
            self.shutdown()
        return 0

    def health(self) -> Dict[str, Any]:
        snapshot = self.monitor.snapshot()
        snapshot["connectivity"] = self.connectivity.status_string()
        snapshot["market_data_age"] = self.state.market_data_age()
        snapshot["allow_fetch"] = self.state.allow_fetch.is_set()
        return snapshot


__all__ = ["Supervisor"]
