"""Configuration records and the key/value CSV loader."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from candletrader.core.errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path("config")

SECTIONS = ("trading_mode", "session", "strategy", "risk", "timing", "logging")
PROVIDER_NAMES = ("alpaca_trading", "alpaca_stocks", "polygon_crypto")
THREAD_NAMES = ("market_data", "account_data", "market_gate", "trader_decision", "logging")

_FROZEN = ConfigDict(frozen=True, extra="ignore")

_SIGNAL_WEIGHTS = (
    "basic_price_pattern_weight",
    "momentum_indicator_weight",
    "volume_analysis_weight",
    "volatility_analysis_weight",
)


class TradingModeConfig(BaseModel):
    model_config = _FROZEN

    mode: Literal["stocks", "crypto"] = "stocks"
    primary_symbol: str

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        return str(value).strip().lower() if value is not None else value

    @field_validator("primary_symbol")
    @classmethod
    def _require_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("primary_symbol must not be empty")
        return value


class SessionConfig(BaseModel):
    model_config = _FROZEN

    timezone: str = "America/New_York"
    market_open_hour: int = Field(default=9, ge=0, le=23)
    market_open_minute: int = Field(default=30, ge=0, le=59)
    market_close_hour: int = Field(default=16, ge=0, le=23)
    market_close_minute: int = Field(default=0, ge=0, le=59)

    @model_validator(mode="after")
    def _open_before_close(self) -> "SessionConfig":
        if (self.market_open_hour, self.market_open_minute) >= (self.market_close_hour, self.market_close_minute):
            raise ValueError("session open must be before session close")
        return self


class StrategyConfig(BaseModel):
    model_config = _FROZEN

    bars_to_fetch_for_calculations: int = 30
    minutes_per_bar: int = 1
    atr_calculation_bars: int = 14
    minimum_bars_for_atr_calculation: int = 2
    average_atr_comparison_multiplier: int = 2
    minimum_data_accumulation_seconds_before_trading: int = 0

    entry_signal_atr_multiplier: float = 1.0
    entry_signal_volume_multiplier: float = 1.0
    crypto_volume_multiplier: float = 1.0
    crypto_volume_change_amplification_factor: float = 1.0
    minimum_volume_threshold: float = 1.0
    atr_absolute_minimum_threshold: float = 0.0
    use_absolute_atr_threshold_instead_of_relative: bool = False

    minimum_price_change_percentage_for_momentum: float = 0.1
    minimum_volume_increase_percentage_for_buy_signals: float = 10.0
    minimum_volume_increase_percentage_for_sell_signals: float = 10.0
    minimum_volatility_percentage_for_buy_signals: float = 0.1
    minimum_volatility_percentage_for_sell_signals: float = 0.1
    minimum_signal_strength_threshold: float = 0.5
    basic_price_pattern_weight: float = 0.3
    momentum_indicator_weight: float = 0.3
    volume_analysis_weight: float = 0.2
    volatility_analysis_weight: float = 0.2

    buy_allow_equal_close: bool = False
    buy_require_higher_high: bool = True
    buy_require_higher_low: bool = True
    sell_allow_equal_close: bool = False
    sell_require_lower_low: bool = True
    sell_require_lower_high: bool = True

    rr_ratio: float = 2.0
    price_buffer_pct: float = 0.005
    min_price_buffer: float = 0.01
    max_price_buffer: float = 1.0
    stop_loss_buffer_amount_dollars: float = 0.0
    use_take_profit_percentage: bool = False
    take_profit_percentage: float = 0.02
    use_current_market_price_for_order_execution: bool = False
    profit_taking_threshold_dollars: float = 0.0

    enable_fixed_share_quantity_per_trade: bool = False
    fixed_share_quantity_per_trade: int = 1
    enable_risk_based_position_multiplier: bool = False
    risk_based_position_size_multiplier: float = 1.0
    maximum_share_quantity_per_single_trade: int = 10_000
    maximum_dollar_value_per_single_trade: float = 1_000_000.0
    minimum_acceptable_price_for_signals: float = 0.01
    maximum_acceptable_price_for_signals: float = 1_000_000.0

    max_retries: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=500, ge=0)
    order_time_in_force: str = "day"
    crypto_order_time_in_force: str = "gtc"

    @model_validator(mode="after")
    def _check_ranges(self) -> "StrategyConfig":
        if not 1 <= self.atr_calculation_bars <= 100:
            raise ValueError("atr_calculation_bars must be within [1, 100]")
        if self.minimum_bars_for_atr_calculation < 1:
            raise ValueError("minimum_bars_for_atr_calculation must be >= 1")
        if self.average_atr_comparison_multiplier < 1:
            raise ValueError("average_atr_comparison_multiplier must be >= 1")
        needed = self.atr_calculation_bars * self.average_atr_comparison_multiplier + 1
        if self.bars_to_fetch_for_calculations < needed:
            raise ValueError(
                f"bars_to_fetch_for_calculations must be >= {needed} "
                "(atr_calculation_bars * average_atr_comparison_multiplier + 1)"
            )
        if self.rr_ratio <= 0:
            raise ValueError("rr_ratio must be > 0")
        if not 0.0 <= self.take_profit_percentage <= 1.0:
            raise ValueError("take_profit_percentage must be within [0, 1]")
        if self.use_take_profit_percentage and self.take_profit_percentage <= 0:
            raise ValueError("take_profit_percentage must be > 0 when use_take_profit_percentage is enabled")
        weights = {name: getattr(self, name) for name in _SIGNAL_WEIGHTS}
        for name, weight in weights.items():
            if weight < 0:
                raise ValueError(f"{name} must be >= 0")
        if sum(weights.values()) > 1.0 + 1e-9:
            raise ValueError(f"signal weights must sum to <= 1 ({' + '.join(_SIGNAL_WEIGHTS)})")
        if not 0.0 <= self.minimum_signal_strength_threshold <= 1.0:
            raise ValueError("minimum_signal_strength_threshold must be within [0, 1]")
        if self.min_price_buffer < 0 or self.min_price_buffer > self.max_price_buffer:
            raise ValueError("min_price_buffer must be >= 0 and <= max_price_buffer")
        if self.enable_fixed_share_quantity_per_trade and self.enable_risk_based_position_multiplier:
            raise ValueError(
                "enable_fixed_share_quantity_per_trade and enable_risk_based_position_multiplier "
                "cannot both be enabled"
            )
        if self.enable_fixed_share_quantity_per_trade and self.fixed_share_quantity_per_trade < 1:
            raise ValueError("fixed_share_quantity_per_trade must be >= 1")
        if self.minimum_acceptable_price_for_signals > self.maximum_acceptable_price_for_signals:
            raise ValueError("minimum_acceptable_price_for_signals exceeds maximum_acceptable_price_for_signals")
        return self


class RiskConfig(BaseModel):
    model_config = _FROZEN

    max_daily_loss_percentage: float = 3.0
    daily_profit_target_percentage: float = 5.0
    max_account_exposure_percentage: float = 50.0
    risk_percentage_per_trade: float = 0.01
    maximum_dollar_value_per_trade: float = 50_000.0
    position_scaling_multiplier: float = 1.0
    buying_power_utilization_percentage: float = 0.95
    buying_power_validation_safety_margin: float = 1.0
    allow_multiple_positions_per_symbol: bool = False
    maximum_position_layers: int = Field(default=1, ge=1)
    close_positions_on_signal_reversal: bool = True

    @model_validator(mode="after")
    def _check_ranges(self) -> "RiskConfig":
        if not 0.0 < self.risk_percentage_per_trade <= 1.0:
            raise ValueError("risk_percentage_per_trade must be within (0, 1]")
        if not 0.0 < self.max_account_exposure_percentage <= 100.0:
            raise ValueError("max_account_exposure_percentage must be within (0, 100]")
        if self.maximum_dollar_value_per_trade <= 0:
            raise ValueError("maximum_dollar_value_per_trade must be > 0")
        if self.max_daily_loss_percentage <= 0:
            raise ValueError("max_daily_loss_percentage must be > 0")
        if self.daily_profit_target_percentage <= 0:
            raise ValueError("daily_profit_target_percentage must be > 0")
        if not 0.0 < self.buying_power_utilization_percentage <= 1.0:
            raise ValueError("buying_power_utilization_percentage must be within (0, 1]")
        if self.buying_power_validation_safety_margin < 1.0:
            raise ValueError("buying_power_validation_safety_margin must be >= 1")
        return self


class TimingConfig(BaseModel):
    model_config = _FROZEN

    market_data_thread_polling_interval_seconds: float = 5.0
    account_data_thread_polling_interval_seconds: float = 10.0
    market_gate_thread_polling_interval_seconds: float = 30.0
    trader_decision_thread_polling_interval_seconds: float = 30.0
    logging_thread_polling_interval_seconds: float = 0.5

    pre_market_open_buffer_minutes: int = 0
    post_market_close_buffer_minutes: int = 0
    market_close_grace_period_minutes: int = 5

    account_data_cache_duration_seconds: float = 5.0
    market_data_staleness_threshold_seconds: float = 120.0
    crypto_data_staleness_threshold_seconds: float = 300.0
    data_availability_wait_timeout_seconds: float = 10.0

    enable_system_health_monitoring: bool = True
    system_health_logging_interval_seconds: float = 300.0
    emergency_trading_halt_duration_minutes: float = 5.0
    countdown_display_refresh_interval_seconds: float = 1.0

    order_cancellation_processing_delay_milliseconds: int = 200
    position_settlement_timeout_milliseconds: int = 5_000
    maximum_position_verification_attempts: int = Field(default=5, ge=1)
    minimum_interval_between_orders_seconds: float = 60.0
    enable_wash_trade_prevention_mechanism: bool = True

    connectivity_base_retry_delay_seconds: float = 1.0
    connectivity_max_retry_delay_seconds: float = 300.0
    connectivity_degraded_threshold: int = 3
    connectivity_disconnected_threshold: int = 5
    connectivity_backoff_multiplier: float = 2.0

    @model_validator(mode="after")
    def _check_ranges(self) -> "TimingConfig":
        for name in (
            "market_data_thread_polling_interval_seconds",
            "account_data_thread_polling_interval_seconds",
            "market_gate_thread_polling_interval_seconds",
            "trader_decision_thread_polling_interval_seconds",
            "logging_thread_polling_interval_seconds",
            "countdown_display_refresh_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.connectivity_backoff_multiplier <= 1.0:
            raise ValueError("connectivity_backoff_multiplier must be > 1")
        if self.connectivity_degraded_threshold < 1:
            raise ValueError("connectivity_degraded_threshold must be >= 1")
        if self.connectivity_disconnected_threshold <= self.connectivity_degraded_threshold:
            raise ValueError("connectivity_disconnected_threshold must be > connectivity_degraded_threshold")
        if self.connectivity_base_retry_delay_seconds <= 0:
            raise ValueError("connectivity_base_retry_delay_seconds must be > 0")
        if self.minimum_interval_between_orders_seconds < 0:
            raise ValueError("minimum_interval_between_orders_seconds must be >= 0")
        return self


class LoggingConfig(BaseModel):
    model_config = _FROZEN

    log_file: str = "trading_system.log"
    runtime_logs_dir: str = "runtime_logs"
    events_file: str = "events.jsonl"
    max_log_file_size_mb: float = 10.0
    log_backup_count: int = 3
    console_log_level: str = "INFO"
    file_log_level: str = "DEBUG"
    queue_size: int = Field(default=10_000, ge=1)

    @field_validator("console_log_level", "file_log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return value


class ThreadSettings(BaseModel):
    model_config = _FROZEN

    name: Optional[str] = None
    priority: str = "NORMAL"
    cpu_affinity: int = -1
    use_cpu_affinity: bool = False


class ProviderConfig(BaseModel):
    model_config = _FROZEN

    api_key: str
    api_secret: str = ""
    base_url: str
    endpoints: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = 10.0
    retry_count: int = Field(default=3, ge=1)
    rate_limit_delay_ms: int = Field(default=100, ge=0)
    enable_ssl_verification: bool = True
    bar_timespan: str = "minute"
    bar_multiplier: int = Field(default=1, ge=1)
    bars_range_minutes: int = Field(default=120, ge=1)

    @field_validator("api_key", "base_url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class SystemConfig(BaseModel):
    """Single immutable record holding every tunable of the trading system."""

    model_config = _FROZEN

    trading_mode: TradingModeConfig
    session: SessionConfig = Field(default_factory=SessionConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    threads: Dict[str, ThreadSettings] = Field(default_factory=dict)
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)

    @field_validator("providers")
    @classmethod
    def _known_providers(cls, value: Dict[str, ProviderConfig]) -> Dict[str, ProviderConfig]:
        unknown = sorted(set(value) - set(PROVIDER_NAMES))
        if unknown:
            raise ValueError(f"unknown providers: {', '.join(unknown)}")
        return value

    @property
    def symbol(self) -> str:
        return self.trading_mode.primary_symbol

    @property
    def is_crypto(self) -> bool:
        return self.trading_mode.mode == "crypto"

    def thread_settings(self, name: str) -> ThreadSettings:
        return self.threads.get(name) or ThreadSettings()


class EnvSettings(BaseSettings):
    """Environment overrides; credentials fill blank provider keys."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    candletrader_config_dir: Optional[str] = None
    log_level: Optional[str] = None
    alpaca_api_key_id: Optional[str] = None
    alpaca_api_secret_key: Optional[str] = None
    polygon_api_key: Optional[str] = None


def read_key_values(path: Path) -> Dict[str, str]:
    """Parse one ``key,value`` CSV file, skipping comments and blank lines."""

    values: Dict[str, str] = {}
    with path.open(newline="", encoding="utf-8") as handle:
        for row in csv.reader(handle):
            if not row or not row[0].strip() or row[0].lstrip().startswith("#"):
                continue
            key = row[0].strip()
            value = ",".join(row[1:]).strip()
            if key.lower() == "key" and value.lower() == "value":
                continue
            values[key] = value
    return values


def _nest(flat: Dict[str, str]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {"threads": {}, "providers": {}}
    for key, value in flat.items():
        if value == "":
            # blank entries fall back to defaults; required ones fail validation by name
            continue
        head, _, rest = key.partition(".")
        if not rest:
            log.debug("config.key_ignored", extra={"key": key})
            continue
        if head in SECTIONS:
            nested.setdefault(head, {})[rest] = value
        elif head == "thread":
            name, _, field = rest.partition(".")
            if name and field:
                nested["threads"].setdefault(name, {})[field] = value
        elif head in PROVIDER_NAMES:
            section = nested["providers"].setdefault(head, {})
            if rest.startswith("endpoints."):
                section.setdefault("endpoints", {})[rest[len("endpoints."):]] = value
            else:
                section[rest] = value
        else:
            log.debug("config.key_ignored", extra={"key": key})
    return nested


def _apply_env(nested: Dict[str, Any], env: EnvSettings) -> None:
    providers = nested["providers"]
    overrides = {
        ("alpaca_trading", "api_key"): env.alpaca_api_key_id,
        ("alpaca_trading", "api_secret"): env.alpaca_api_secret_key,
        ("alpaca_stocks", "api_key"): env.alpaca_api_key_id,
        ("alpaca_stocks", "api_secret"): env.alpaca_api_secret_key,
        ("polygon_crypto", "api_key"): env.polygon_api_key,
    }
    for (provider, field), value in overrides.items():
        if value and provider in providers and not providers[provider].get(field):
            providers[provider][field] = value
    if env.log_level:
        nested.setdefault("logging", {})["console_log_level"] = env.log_level


def _error_key(exc: ValidationError) -> tuple[str, str]:
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return loc, first.get("msg", "invalid value")


def build_config(flat: Dict[str, str], *, env: EnvSettings | None = None) -> SystemConfig:
    """Validate a flat ``key -> value`` mapping into a :class:`SystemConfig`."""

    nested = _nest(flat)
    if env is not None:
        _apply_env(nested, env)
    try:
        config = SystemConfig.model_validate(nested)
    except ValidationError as exc:
        key, message = _error_key(exc)
        raise ConfigError(f"invalid configuration for '{key}': {message}", key=key) from exc
    if "alpaca_trading" not in config.providers:
        raise ConfigError("alpaca_trading provider is required", key="alpaca_trading")
    if config.is_crypto and "polygon_crypto" not in config.providers:
        log.warning("config.crypto_without_polygon", extra={"symbol": config.symbol})
    return config


def config_files(config_dir: Path) -> Iterable[Path]:
    return sorted(p for p in config_dir.glob("*.csv") if p.is_file())


def load_config(config_dir: Path | str | None = None, *, env: EnvSettings | None = None) -> SystemConfig:
    """Load and validate every ``*.csv`` file from ``config_dir``."""

    env = env if env is not None else EnvSettings()
    directory = Path(config_dir or env.candletrader_config_dir or DEFAULT_CONFIG_DIR)
    if not directory.is_dir():
        raise ConfigError(f"config directory not found: {directory}")
    files = list(config_files(directory))
    if not files:
        raise ConfigError(f"no configuration files found in {directory}")
    flat: Dict[str, str] = {}
    for path in files:
        try:
            flat.update(read_key_values(path))
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise ConfigError(f"failed to read {path}: {exc}") from exc
    config = build_config(flat, env=env)
    log.info(
        "config.loaded",
        extra={"dir": str(directory), "files": [p.name for p in files], "symbol": config.symbol},
    )
    return config


__all__ = [
    "EnvSettings",
    "LoggingConfig",
    "ProviderConfig",
    "RiskConfig",
    "SessionConfig",
    "StrategyConfig",
    "SystemConfig",
    "ThreadSettings",
    "TimingConfig",
    "TradingModeConfig",
    "build_config",
    "load_config",
    "read_key_values",
]
