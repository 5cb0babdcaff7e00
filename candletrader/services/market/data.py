"""Bar retrieval, validation and indicator snapshots."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from candletrader.core.config import SystemConfig
from candletrader.core.errors import MarketDataError
from candletrader.core.indicators import compute_atr, compute_average_volume
from candletrader.core.types import AccountSnapshot, Bar, MarketSnapshot, ProcessedData
from candletrader.services.runtime.state import SharedState

log = logging.getLogger(__name__)


def parse_bar_timestamp(value: str) -> Optional[datetime]:
    """Parse ISO-8601 (Alpaca) or epoch milliseconds/seconds (Polygon) into an aware datetime."""

    if not value:
        return None
    text = value.strip()
    if text.isdigit():
        number = int(text)
        seconds = number / 1000.0 if number > 10**11 else float(number)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def validate_bars(bars: Sequence[Bar]) -> None:
    for index, bar in enumerate(bars):
        if not bar.is_valid():
            raise MarketDataError(f"invalid bar at index {index} ({bar.t}): {bar}")


class MarketDataManager:
    """Turns raw provider bars into validated :class:`MarketSnapshot` objects."""

    def __init__(self, config: SystemConfig, api: Any, account_manager: Any, state: SharedState) -> None:
        self.config = config
        self.api = api
        self.account_manager = account_manager
        self.state = state

    @property
    def symbol(self) -> str:
        return self.config.symbol

    @property
    def staleness_threshold(self) -> float:
        timing = self.config.timing
        if self.config.is_crypto:
            return timing.crypto_data_staleness_threshold_seconds
        return timing.market_data_staleness_threshold_seconds

    def required_bars(self) -> int:
        return self.config.strategy.bars_to_fetch_for_calculations

    def fetch_bars(self, symbol: Optional[str] = None) -> List[Bar]:
        return self.api.get_recent_bars(symbol or self.symbol, self.required_bars())

    def create_snapshot_from_bars(self, bars: Sequence[Bar]) -> MarketSnapshot:
        """Validate ``bars`` and compute indicators; raises :class:`MarketDataError`."""

        strategy = self.config.strategy
        if len(bars) < self.required_bars():
            raise MarketDataError(f"insufficient bars: got {len(bars)}, need {self.required_bars()}")
        validate_bars(bars)
        highs = [b.h for b in bars]
        lows = [b.l for b in bars]
        closes = [b.c for b in bars]
        volumes = [b.v for b in bars]
        atr = compute_atr(highs, lows, closes, strategy.atr_calculation_bars, strategy.minimum_bars_for_atr_calculation)
        avg_atr = compute_atr(
            highs,
            lows,
            closes,
            strategy.atr_calculation_bars * strategy.average_atr_comparison_multiplier,
            strategy.minimum_bars_for_atr_calculation,
        )
        avg_vol = compute_average_volume(volumes, strategy.atr_calculation_bars, strategy.minimum_volume_threshold)
        return MarketSnapshot(
            atr=atr,
            avg_atr=avg_atr,
            avg_vol=avg_vol,
            curr=bars[-1],
            prev=bars[-2],
            oldest_bar_timestamp=bars[0].t,
        )

    def fetch_and_process(self, symbol: Optional[str] = None) -> Tuple[Optional[ProcessedData], List[Bar]]:
        """Fetch, validate and enrich bars; returns ``(None, [])`` when the data is unusable."""

        symbol = symbol or self.symbol
        bars = self.fetch_bars(symbol)
        try:
            market = self.create_snapshot_from_bars(bars)
        except MarketDataError as exc:
            log.warning("market.data_rejected", extra={"symbol": symbol, "reason": str(exc), "bars": len(bars)})
            return None, []
        if market.atr == 0.0:
            log.info("market.atr_warmup", extra={"symbol": symbol, "bars": len(bars)})
        account: AccountSnapshot = self.account_manager.fetch_account_snapshot()
        return ProcessedData(market=market, account=account), list(bars)

    def is_data_fresh(self) -> bool:
        age = self.state.market_data_age()
        if age is None:
            return False
        return age <= self.staleness_threshold

    def wait_for_fresh_data(self, timeout: Optional[float] = None) -> bool:
        if timeout is None:
            timeout = self.config.timing.data_availability_wait_timeout_seconds
        return self.state.wait_for_data(timeout)

    def accumulation_seconds(self, market: MarketSnapshot, *, now: Optional[datetime] = None) -> Optional[float]:
        oldest = parse_bar_timestamp(market.oldest_bar_timestamp)
        if oldest is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - oldest).total_seconds()

    def has_accumulated_enough(self, market: MarketSnapshot, *, now: Optional[datetime] = None) -> bool:
        required = self.config.strategy.minimum_data_accumulation_seconds_before_trading
        if required <= 0:
            return True
        elapsed = self.accumulation_seconds(market, now=now)
        return elapsed is not None and elapsed >= required


__all__ = ["MarketDataManager", "parse_bar_timestamp", "validate_bars"]
