"""Account-level trading permissions evaluated before every entry."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from candletrader.core.config import RiskConfig, TimingConfig
from candletrader.core.market_hours import MarketSession
from candletrader.core.types import ProcessedData

log = logging.getLogger(__name__)

DAILY_LOSS = "daily_loss_limit_breached"
DAILY_PROFIT = "daily_profit_target_reached"
EXPOSURE = "exposure_limit_reached"
OUTSIDE_SESSION = "outside_session"
INVALID_EQUITY = "invalid_equity"


@dataclass(slots=True)
class Decision:
    """Risk decision describing whether trading may continue."""

    allow: bool
    reason: str = "ok"
    daily_pnl_pct: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def daily_pnl_percentage(equity: float, initial_equity: float) -> float:
    if initial_equity <= 0:
        return 0.0
    return (equity - initial_equity) / initial_equity * 100.0


class RiskManager:
    """Daily loss, profit target, exposure and session checks."""

    def __init__(
        self,
        risk: RiskConfig,
        timing: TimingConfig,
        session: Optional[MarketSession] = None,
        *,
        crypto: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.risk = risk
        self.timing = timing
        self.session = session or MarketSession()
        self.crypto = crypto
        self._clock = clock

    def in_session(self, now: Optional[datetime] = None) -> bool:
        if self.crypto:
            return True
        return self.session.within_window(
            now or self._clock(),
            pre_open_minutes=self.timing.pre_market_open_buffer_minutes,
            post_close_minutes=self.timing.post_market_close_buffer_minutes,
        )

    def validate_trading_permissions(
        self,
        data: ProcessedData,
        equity: float,
        initial_equity: float,
        *,
        now: Optional[datetime] = None,
    ) -> Decision:
        if not math.isfinite(equity) or equity <= 0 or not math.isfinite(initial_equity) or initial_equity <= 0:
            return self._deny(INVALID_EQUITY, equity=equity, initial_equity=initial_equity)

        pnl_pct = daily_pnl_percentage(equity, initial_equity)
        if pnl_pct <= -self.risk.max_daily_loss_percentage:
            return self._deny(DAILY_LOSS, pnl_pct, equity=equity, initial_equity=initial_equity)
        if pnl_pct >= self.risk.daily_profit_target_percentage:
            return self._deny(DAILY_PROFIT, pnl_pct, equity=equity, initial_equity=initial_equity)
        if data.exposure_pct >= self.risk.max_account_exposure_percentage:
            return self._deny(EXPOSURE, pnl_pct, exposure_pct=data.exposure_pct)
        if not self.in_session(now):
            return self._deny(OUTSIDE_SESSION, pnl_pct)
        return Decision(True, daily_pnl_pct=pnl_pct)

    def _deny(self, reason: str, pnl_pct: float = 0.0, **fields: float) -> Decision:
        log.warning("risk.denied", extra={"reason": reason, "daily_pnl_pct": round(pnl_pct, 4), **fields})
        return Decision(False, reason, pnl_pct)


__all__ = [
    "DAILY_LOSS",
    "DAILY_PROFIT",
    "Decision",
    "EXPOSURE",
    "INVALID_EQUITY",
    "OUTSIDE_SESSION",
    "RiskManager",
    "daily_pnl_percentage",
]
