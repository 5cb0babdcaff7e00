"""One decision cycle: data checks, risk, signals, sizing, execution."""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from candletrader.core.config import SystemConfig
from candletrader.core.connectivity import ConnectivityManager
from candletrader.core.errors import ProviderError, ProviderUnauthorized
from candletrader.core.logging import LoggingContext
from candletrader.core.types import PositionDetails, ProcessedData
from candletrader.services.execution.executor import OrderExecutor
from candletrader.services.market.data import MarketDataManager
from candletrader.services.risk.engine import RiskManager
from candletrader.services.runtime.monitor import HealthMonitor
from candletrader.services.runtime.state import SharedState
from candletrader.services.strategy.exits import compute_exit_targets
from candletrader.services.strategy.signals import evaluate_filters, evaluate_signals
from candletrader.services.strategy.sizing import compute_position_sizing

log = logging.getLogger(__name__)

# run_cycle outcomes
HALTED = "halted"
NO_DATA = "no_data"
STALE = "stale_data"
MARKET_CLOSED = "market_closed"
ACCUMULATING = "accumulating"
RISK_DENIED = "risk_denied"
PROFIT_TAKEN = "profit_taken"
NO_SIGNAL = "no_signal"
FILTERED = "filtered"
SKIPPED = "skipped"
SUBMITTED = "order_submitted"
REJECTED = "order_rejected"


class TradingCoordinator:
    """Runs the trader's per-cycle pipeline against locally copied snapshots."""

    def __init__(
        self,
        config: SystemConfig,
        state: SharedState,
        api: Any,
        account_manager: Any,
        market_data: MarketDataManager,
        risk: RiskManager,
        executor: OrderExecutor,
        connectivity: ConnectivityManager,
        *,
        logging_ctx: Optional[LoggingContext] = None,
        monitor: Optional[HealthMonitor] = None,
        initial_equity: float = 0.0,
    ) -> None:
        self.config = config
        self.state = state
        self.api = api
        self.account_manager = account_manager
        self.market_data = market_data
        self.risk = risk
        self.executor = executor
        self.connectivity = connectivity
        self.logging_ctx = logging_ctx
        self.monitor = monitor
        self.initial_equity = initial_equity

    @property
    def symbol(self) -> str:
        return self.config.symbol

    def run_cycle(self, loop_counter: int = 0) -> str:
        try:
            return self._run_cycle(loop_counter)
        except ProviderUnauthorized as exc:
            log.error("trader.unauthorized", extra={"error": str(exc), "provider": exc.provider})
            self.executor.handle_trading_halt("unauthorized")
            return HALTED

    def _run_cycle(self, loop_counter: int) -> str:
        if self.connectivity.is_outage():
            if self.monitor is not None:
                self.monitor.record_connectivity_issue()
            reason = f"connectivity {self.connectivity.status_string()}"
            self.executor.handle_trading_halt(reason)
            return HALTED

        if not self.market_data.wait_for_fresh_data():
            log.info("trader.waiting_for_data", extra={"loop": loop_counter})
            return NO_DATA

        view = self.state.read()
        if not self.market_data.is_data_fresh():
            log.warning(
                "trader.stale_data",
                extra={"age_seconds": self.state.market_data_age(), "threshold": self.market_data.staleness_threshold},
            )
            if self.monitor is not None:
                self.monitor.record_stale_data()
            return STALE

        account = view.account
        data = ProcessedData(market=view.market, account=account)
        if self.logging_ctx is not None:
            self.logging_ctx.trades.log_account_update(
                equity=account.equity, buying_power=account.buying_power, exposure_pct=account.exposure_pct
            )

        if not self.config.is_crypto and not self.api.is_market_open(self.symbol):
            if not account.pos_details.is_flat:
                self.handle_market_close()
            else:
                log.info("trader.market_closed", extra={"symbol": self.symbol})
            return MARKET_CLOSED

        if not self.market_data.has_accumulated_enough(view.market):
            log.info(
                "trader.accumulating",
                extra={"required_seconds": self.config.strategy.minimum_data_accumulation_seconds_before_trading},
            )
            return ACCUMULATING

        if self.initial_equity <= 0 and math.isfinite(account.equity) and account.equity > 0:
            self.initial_equity = account.equity
            log.info("trader.initial_equity", extra={"equity": account.equity})

        decision = self.risk.validate_trading_permissions(data, account.equity, self.initial_equity)
        if not decision.allow:
            self.executor.handle_trading_halt(decision.reason)
            return RISK_DENIED

        if self._should_take_profit(account.pos_details):
            self.executor.close_position_for_profit(account.pos_details)
            return PROFIT_TAKEN

        return self._evaluate_and_trade(data, loop_counter)

    def _should_take_profit(self, position: PositionDetails) -> bool:
        threshold = self.config.strategy.profit_taking_threshold_dollars
        return threshold > 0 and not position.is_flat and position.unrealized_pl > threshold

    def _evaluate_and_trade(self, data: ProcessedData, loop_counter: int) -> str:
        strategy = self.config.strategy
        crypto = self.config.is_crypto
        signal = evaluate_signals(data, strategy, crypto=crypto)
        filters = evaluate_filters(data, strategy, crypto=crypto)
        log.info(
            "trader.signal",
            extra={
                "loop": loop_counter,
                "buy": signal.buy,
                "sell": signal.sell,
                "strength": round(signal.signal_strength, 3),
                "reason": signal.reason,
                "atr_pass": filters.atr_pass,
                "vol_pass": filters.vol_pass,
                "doji_pass": filters.doji_pass,
            },
        )
        if self.logging_ctx is not None:
            trades = self.logging_ctx.trades
            trades.log_signal(
                self.symbol, buy=signal.buy, sell=signal.sell, strength=signal.signal_strength, reason=signal.reason
            )
            trades.log_filters(
                self.symbol,
                atr_pass=filters.atr_pass,
                atr_ratio=filters.atr_ratio,
                vol_pass=filters.vol_pass,
                vol_ratio=filters.vol_ratio,
                doji_pass=filters.doji_pass,
            )

        side = signal.side
        if side is None:
            return NO_SIGNAL
        if not filters.all_pass:
            log.info("trader.filtered", extra={"side": side})
            return FILTERED

        price = self._entry_price(data)
        account = data.account
        sizing = compute_position_sizing(
            data,
            account.equity,
            account.pos_details.qty,
            account.buying_power,
            strategy,
            self.config.risk,
            price=price,
            side=side,
        )
        if self.logging_ctx is not None:
            self.logging_ctx.trades.log_position_sizing(
                self.symbol,
                quantity=sizing.quantity,
                risk_amount=sizing.risk_amount,
                position_value=sizing.quantity * price,
                buying_power=account.buying_power,
            )
        if sizing.quantity < 1:
            log.info(
                "trader.skipped",
                extra={
                    "reason": "quantity < 1",
                    "risk_qty": sizing.risk_based_qty,
                    "exposure_qty": sizing.exposure_based_qty,
                    "notional_qty": sizing.max_value_qty,
                    "bp_qty": sizing.buying_power_qty,
                },
            )
            return SKIPPED

        exits = compute_exit_targets(side, price, sizing.risk_per_share, strategy)
        result = self.executor.execute_trade(
            side, sizing.quantity, price, exits, account.pos_details, account.buying_power
        )
        return SUBMITTED if result.accepted else REJECTED

    def _entry_price(self, data: ProcessedData) -> float:
        close = data.curr.c if data.curr is not None else 0.0
        if not self.config.strategy.use_current_market_price_for_order_execution:
            return close
        try:
            price = self.api.get_current_price(self.symbol)
        except ProviderUnauthorized:
            raise
        except ProviderError as exc:
            log.warning("trader.quote_unavailable", extra={"error": str(exc)})
            return close
        return price if math.isfinite(price) and price > 0 else close

    def handle_market_close(self) -> bool:
        """Flatten the open position after the session; safe to call from any worker."""

        position = self.account_manager.fetch_position_details(self.symbol)
        if position.is_flat:
            return False
        return self.executor.handle_market_close_positions(position)


__all__ = ["TradingCoordinator"]
