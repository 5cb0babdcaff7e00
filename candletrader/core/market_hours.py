"""Helpers for determining trading session windows."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from candletrader.core.config import SessionConfig


class MarketSession:
    """Regular weekday session with optional pre/post buffers."""

    def __init__(self, config: SessionConfig | None = None) -> None:
        config = config or SessionConfig()
        self.zone = ZoneInfo(config.timezone)
        self.open_time = time(config.market_open_hour, config.market_open_minute)
        self.close_time = time(config.market_close_hour, config.market_close_minute)

    def _localize(self, now: datetime | None) -> datetime:
        if now is None:
            now = datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.zone)

    def _bounds(self, local: datetime) -> tuple[datetime, datetime]:
        open_dt = datetime.combine(local.date(), self.open_time, tzinfo=self.zone)
        close_dt = datetime.combine(local.date(), self.close_time, tzinfo=self.zone)
        return open_dt, close_dt

    def within_window(
        self,
        now: datetime | None = None,
        *,
        pre_open_minutes: int = 0,
        post_close_minutes: int = 0,
    ) -> bool:
        """Return True inside ``[open - pre, close + post]`` on a weekday."""

        local = self._localize(now)
        if local.weekday() >= 5:  # Saturday/Sunday
            return False
        open_dt, close_dt = self._bounds(local)
        start = open_dt - timedelta(minutes=pre_open_minutes)
        end = close_dt + timedelta(minutes=post_close_minutes)
        return start <= local <= end

    def in_close_grace(self, now: datetime | None = None, *, grace_minutes: int) -> bool:
        """Return True during the ``grace_minutes`` right after the session close."""

        if grace_minutes <= 0:
            return False
        local = self._localize(now)
        if local.weekday() >= 5:
            return False
        _, close_dt = self._bounds(local)
        return close_dt <= local < close_dt + timedelta(minutes=grace_minutes)


__all__ = ["MarketSession"]
