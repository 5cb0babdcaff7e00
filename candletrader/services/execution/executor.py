"""Order execution: validation, reversal flattening, bracket submission."""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from typing import Any, Callable, Dict, Mapping, Optional

from candletrader.core.config import SystemConfig
from candletrader.core.errors import ProviderError, ProviderRequestError, ProviderUnauthorized
from candletrader.core.logging import LoggingContext
from candletrader.core.types import PositionDetails
from candletrader.services.execution.types import ExecFailure, ExecResult, Side, opposite
from candletrader.services.runtime.countdown import sleep_with_countdown
from candletrader.services.runtime.state import SharedState
from candletrader.services.strategy.exits import ExitTargets

log = logging.getLogger(__name__)


def _order_id(response: Any) -> Optional[str]:
    if isinstance(response, Mapping):
        value = response.get("id")
        return str(value) if value else None
    return None


class OrderExecutor:
    """Serializes every order for the traded symbol.

    An entry goes through ``validate -> (cancel, flatten) -> submit -> record``.
    Business outcomes come back as :class:`ExecResult`; only authorization
    failures propagate so the caller can halt trading.
    """

    def __init__(
        self,
        config: SystemConfig,
        api: Any,
        account_manager: Any,
        state: SharedState,
        logging_ctx: Optional[LoggingContext] = None,
        *,
        monitor: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.api = api
        self.account_manager = account_manager
        self.state = state
        self.logging_ctx = logging_ctx
        self.monitor = monitor
        self._sleep = sleep
        self._clock = clock
        self._order_lock = threading.Lock()
        self._halt_lock = threading.Lock()
        self._halted = False
        self._layers = 0

    @property
    def symbol(self) -> str:
        return self.config.symbol

    @property
    def halted(self) -> bool:
        with self._halt_lock:
            return self._halted

    @property
    def layers(self) -> int:
        return self._layers

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_order_parameters(self, quantity: int, price: float) -> Optional[str]:
        strategy = self.config.strategy
        if not math.isfinite(price) or price <= 0:
            return f"invalid price {price}"
        if price < strategy.minimum_acceptable_price_for_signals:
            return f"price {price} below minimum {strategy.minimum_acceptable_price_for_signals}"
        if price > strategy.maximum_acceptable_price_for_signals:
            return f"price {price} above maximum {strategy.maximum_acceptable_price_for_signals}"
        if quantity > strategy.maximum_share_quantity_per_single_trade:
            return f"quantity {quantity} above per-trade share limit {strategy.maximum_share_quantity_per_single_trade}"
        if quantity * price > strategy.maximum_dollar_value_per_single_trade:
            return f"order value {quantity * price:.2f} above per-trade dollar limit"
        return None

    def check_wash_trade(self, now: Optional[float] = None) -> Optional[float]:
        """Return the seconds still to wait before another order, or None when allowed."""

        timing = self.config.timing
        if not timing.enable_wash_trade_prevention_mechanism:
            return None
        elapsed = self.state.seconds_since_last_order(now if now is not None else self._clock())
        if elapsed is None or elapsed >= timing.minimum_interval_between_orders_seconds:
            return None
        return timing.minimum_interval_between_orders_seconds - elapsed

    def validate_trade_feasibility(self, quantity: int, price: float, buying_power: float) -> bool:
        if quantity <= 0:
            return False
        required = quantity * price * self.config.risk.buying_power_validation_safety_margin
        return buying_power >= required

    def _validate(self, side: Side, quantity: int, price: float, buying_power: float) -> Optional[ExecResult]:
        if self.halted:
            return ExecResult.rejected(ExecFailure.HALTED, "trading halted", side=side, quantity=quantity)
        if quantity < 1:
            return ExecResult.rejected(ExecFailure.INVALID_ORDER, "quantity < 1", side=side, quantity=quantity)
        problem = self.validate_order_parameters(quantity, price)
        if problem:
            return ExecResult.rejected(ExecFailure.INVALID_ORDER, problem, side=side, quantity=quantity)
        wait = self.check_wash_trade()
        if wait is not None:
            return ExecResult.rejected(
                ExecFailure.WASH_TRADE_PREVENTED,
                f"minimum order interval not elapsed ({wait:.1f}s remaining)",
                side=side,
                quantity=quantity,
            )
        if not self.validate_trade_feasibility(quantity, price, buying_power):
            return ExecResult.rejected(
                ExecFailure.INSUFFICIENT_BUYING_POWER,
                f"required {quantity * price * self.config.risk.buying_power_validation_safety_margin:.2f} "
                f"exceeds buying power {buying_power:.2f}",
                side=side,
                quantity=quantity,
            )
        return None

    # ------------------------------------------------------------------
    # Order payloads
    # ------------------------------------------------------------------
    def _time_in_force(self) -> str:
        strategy = self.config.strategy
        return strategy.crypto_order_time_in_force if self.config.is_crypto else strategy.order_time_in_force

    def build_market_order(self, side: Side, quantity: int) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "qty": str(int(quantity)),
            "side": side,
            "type": "market",
            "time_in_force": self._time_in_force(),
            "client_order_id": uuid.uuid4().hex,
        }

    def build_bracket_order(self, side: Side, quantity: int, exits: ExitTargets) -> Dict[str, Any]:
        order = self.build_market_order(side, quantity)
        order["order_class"] = "bracket"
        order["take_profit"] = {"limit_price": f"{exits.take_profit:.2f}"}
        order["stop_loss"] = {"stop_price": f"{exits.stop_loss:.2f}"}
        return order

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def execute_trade(
        self,
        side: Side,
        quantity: int,
        entry_price: float,
        exits: ExitTargets,
        position: PositionDetails,
        buying_power: float,
    ) -> ExecResult:
        with self._order_lock:
            rejection = self._validate(side, quantity, entry_price, buying_power)
            if rejection is not None:
                return self._reject(rejection)

            if position.is_flat:
                self._layers = 0
            else:
                same_direction = (position.qty > 0) == (side == "buy")
                if same_direction:
                    return self._add_layer(side, quantity, entry_price)
                if not self.config.risk.close_positions_on_signal_reversal:
                    return self._reject(
                        ExecResult.rejected(
                            ExecFailure.POSITION_LIMIT_REACHED,
                            "opposite position open and reversal closing disabled",
                            side=side,
                            quantity=quantity,
                        )
                    )
                self.cancel_open_orders()
                if not self._flatten(position, reason="signal_reversal"):
                    return self._reject(
                        ExecResult.rejected(
                            ExecFailure.CLOSURE_FAILED,
                            f"position of {position.qty} did not flatten",
                            side=side,
                            quantity=quantity,
                        )
                    )

            result = self._submit(self.build_bracket_order(side, quantity, exits), entry_price, "bracket")
            if result.accepted:
                self._layers = 1
            return result

    def _add_layer(self, side: Side, quantity: int, entry_price: float) -> ExecResult:
        risk = self.config.risk
        layers = max(self._layers, 1)
        if not risk.allow_multiple_positions_per_symbol or layers >= risk.maximum_position_layers:
            return self._reject(
                ExecResult.rejected(
                    ExecFailure.POSITION_LIMIT_REACHED,
                    f"position layers {layers}/{risk.maximum_position_layers}",
                    side=side,
                    quantity=quantity,
                )
            )
        result = self._submit(self.build_market_order(side, quantity), entry_price, "market")
        if result.accepted:
            self._layers = layers + 1
        return result

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def _submit(self, order: Dict[str, Any], price: float, order_type: str) -> ExecResult:
        side: Side = order["side"]
        quantity = int(order["qty"])
        client_order_id = order["client_order_id"]
        attempts = self.config.strategy.max_retries
        delay = self.config.strategy.retry_delay_ms / 1000.0
        for attempt in range(1, attempts + 1):
            try:
                response = self.api.place_order(order)
            except ProviderUnauthorized:
                raise
            except ProviderRequestError as exc:
                return self._reject(
                    ExecResult.rejected(
                        ExecFailure.BROKER_REJECTED,
                        str(exc),
                        client_order_id=client_order_id,
                        side=side,
                        quantity=quantity,
                        payload=order,
                    )
                )
            except ProviderError as exc:
                if exc.retryable and attempt < attempts:
                    log.warning(
                        "execution.retry",
                        extra={"client_order_id": client_order_id, "attempt": attempt, "error": str(exc)},
                    )
                    self._sleep(delay * attempt)
                    continue
                return self._reject(
                    ExecResult.rejected(
                        ExecFailure.NETWORK_ERROR,
                        str(exc),
                        client_order_id=client_order_id,
                        side=side,
                        quantity=quantity,
                        payload=order,
                    )
                )
            status = str(response.get("status", "")) if isinstance(response, Mapping) else ""
            if status.lower() == "rejected":
                return self._reject(
                    ExecResult.rejected(
                        ExecFailure.BROKER_REJECTED,
                        f"broker status {status}",
                        client_order_id=client_order_id,
                        order_id=_order_id(response),
                        side=side,
                        quantity=quantity,
                        payload=order,
                    )
                )
            return self._record(order, response, price, order_type)
        raise AssertionError("unreachable")  # pragma: no cover

    def _record(self, order: Dict[str, Any], response: Any, price: float, order_type: str) -> ExecResult:
        self.state.mark_order(self._clock())
        self.account_manager.invalidate()
        result = ExecResult(
            True,
            "submitted",
            client_order_id=order["client_order_id"],
            order_id=_order_id(response),
            side=order["side"],
            quantity=int(order["qty"]),
            payload=order,
        )
        log.info(
            "execution.order_submitted",
            extra={
                "symbol": self.symbol,
                "side": result.side,
                "qty": result.quantity,
                "type": order_type,
                "client_order_id": result.client_order_id,
                "order_id": result.order_id,
                "take_profit": order.get("take_profit", {}).get("limit_price"),
                "stop_loss": order.get("stop_loss", {}).get("stop_price"),
            },
        )
        if self.logging_ctx is not None:
            self.logging_ctx.trades.log_order(
                self.symbol,
                side=str(result.side),
                quantity=result.quantity,
                price=price,
                order_type=order_type,
                status="SUBMITTED",
                notes=result.client_order_id or "",
            )
        if self.monitor is not None:
            self.monitor.record_order(True)
        return result

    def _reject(self, result: ExecResult) -> ExecResult:
        failure = result.failure.value if result.failure else "unknown"
        log.warning(
            "execution.rejected",
            extra={"symbol": self.symbol, "failure": failure, "reason": result.reason, "side": result.side, "qty": result.quantity},
        )
        if self.logging_ctx is not None:
            self.logging_ctx.trades.log_rejection(
                self.symbol, reason=failure, side=result.side or "", quantity=result.quantity, notes=result.reason
            )
        if self.monitor is not None:
            self.monitor.record_order(False)
        return result

    # ------------------------------------------------------------------
    # Cancellation and flattening
    # ------------------------------------------------------------------
    def cancel_open_orders(self) -> int:
        """Cancel open orders for the symbol, then give the broker time to process them."""

        try:
            orders = self.api.get_open_orders(self.symbol)
        except ProviderUnauthorized:
            raise
        except ProviderError as exc:
            log.warning("execution.cancel_lookup_failed", extra={"symbol": self.symbol, "error": str(exc)})
            return 0
        cancelled = 0
        for order in orders:
            order_id = order.get("id") if isinstance(order, Mapping) else None
            if not order_id:
                continue
            try:
                self.api.cancel_order(str(order_id))
                cancelled += 1
            except ProviderUnauthorized:
                raise
            except ProviderError as exc:
                log.warning("execution.cancel_failed", extra={"order_id": order_id, "error": str(exc)})
        if cancelled:
            log.info("execution.orders_cancelled", extra={"symbol": self.symbol, "count": cancelled})
            self._sleep(self.config.timing.order_cancellation_processing_delay_milliseconds / 1000.0)
        return cancelled

    def _flatten(self, position: PositionDetails, *, reason: str) -> bool:
        """Close ``position`` and poll until the broker reports it flat."""

        if position.is_flat:
            return True
        side = opposite("buy" if position.qty > 0 else "sell")
        try:
            self.api.close_position(self.symbol, abs(position.qty))
        except ProviderUnauthorized:
            raise
        except ProviderError as exc:
            log.error("execution.close_failed", extra={"symbol": self.symbol, "qty": position.qty, "error": str(exc)})
            return False
        log.info("execution.close_submitted", extra={"symbol": self.symbol, "qty": position.qty, "reason": reason})
        if self.logging_ctx is not None:
            self.logging_ctx.trades.log_order(
                self.symbol,
                side=side,
                quantity=abs(position.qty),
                price=0.0,
                order_type="market",
                status="CLOSE_SUBMITTED",
                notes=reason,
            )
        self.state.mark_order(self._clock())
        self.account_manager.invalidate()
        flat = self.verify_flat(previous_qty=position.qty)
        if flat:
            self._layers = 0
        return flat

    def verify_flat(self, *, previous_qty: int = 0) -> bool:
        timing = self.config.timing
        attempts = timing.maximum_position_verification_attempts
        interval = timing.position_settlement_timeout_milliseconds / 1000.0 / attempts
        for attempt in range(1, attempts + 1):
            try:
                current = self.account_manager.fetch_position_details(self.symbol)
            except ProviderUnauthorized:
                raise
            except ProviderError as exc:
                log.warning("execution.verify_failed", extra={"attempt": attempt, "error": str(exc)})
                current = None
            if current is not None and current.is_flat:
                if self.logging_ctx is not None:
                    self.logging_ctx.trades.log_position_change(
                        self.symbol, previous_qty=previous_qty, current_qty=0, unrealized_pl=current.unrealized_pl
                    )
                log.info("execution.position_flat", extra={"symbol": self.symbol, "attempts": attempt})
                return True
            if attempt < attempts:
                self._sleep(interval)
        log.error("execution.position_not_flat", extra={"symbol": self.symbol, "attempts": attempts})
        return False

    def handle_market_close_positions(self, position: PositionDetails) -> bool:
        """Flatten whatever is open when the session has ended."""

        with self._order_lock:
            if position.is_flat:
                return False
            log.warning("execution.market_close_flatten", extra={"symbol": self.symbol, "qty": position.qty})
            self.cancel_open_orders()
            return self._flatten(position, reason="market_close")

    def close_position_for_profit(self, position: PositionDetails) -> bool:
        with self._order_lock:
            if position.is_flat:
                return False
            log.info(
                "execution.profit_taking",
                extra={"symbol": self.symbol, "qty": position.qty, "unrealized_pl": position.unrealized_pl},
            )
            self.cancel_open_orders()
            return self._flatten(position, reason="profit_taking")

    # ------------------------------------------------------------------
    # Halt
    # ------------------------------------------------------------------
    def handle_trading_halt(self, reason: str) -> bool:
        """Block new orders for the configured halt duration; returns False if shutdown interrupted it."""

        minutes = self.config.timing.emergency_trading_halt_duration_minutes
        with self._halt_lock:
            self._halted = True
        log.warning("execution.trading_halt", extra={"reason": reason, "minutes": minutes})
        if self.logging_ctx is not None:
            self.logging_ctx.trades.log_halt(self.symbol, reason=reason, minutes=minutes)
        status = self.logging_ctx.inline_status if self.logging_ctx is not None else None
        try:
            completed = sleep_with_countdown(
                minutes * 60.0,
                stop_event=self.state.stop_event,
                refresh=self.config.timing.countdown_display_refresh_interval_seconds,
                status=status,
                label=f"trading halted ({reason}), resuming in",
            )
        finally:
            if self.logging_ctx is not None:
                self.logging_ctx.end_inline()
            with self._halt_lock:
                self._halted = False
        return completed


__all__ = ["OrderExecutor"]
