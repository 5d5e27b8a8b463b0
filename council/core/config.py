"""
Configuration Manager - Loads and validates all system configuration.

Merges YAML config with environment variables. Environment variables take
precedence over YAML values for deployment flexibility. Every section is a
pydantic model so bad values fail loudly at startup.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from council.agents.profiles import AgentProfile


def _as_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

_ENV_MAPPINGS = {
    "COUNCIL_LOG_LEVEL": ("app", "log_level"),
    "COUNCIL_LOG_DIR": ("app", "log_dir"),
    "COUNCIL_JSON_LOGS": ("app", "json_logs", _as_bool),
    "RSI_PERIOD": ("indicators", "rsi_period", int),
    "WHALE_PERCENTILE": ("indicators", "whale_percentile", float),
    "WHALE_RATIO": ("indicators", "whale_ratio", float),
    "PANIC_SELL_MULTIPLIER": ("exit_liquidity", "panic_multiplier", float),
    "MENTAL_RESET_POLICY": ("mental_state", "reset_policy"),
    "TAKE_PROFIT_PCT": ("monitor", "take_profit_pct", float),
    "STOP_LOSS_PCT": ("monitor", "stop_loss_pct", float),
    "MAX_HOLD_HOURS": ("monitor", "max_hold_hours", float),
    "MAX_OPEN_POSITIONS": ("monitor", "max_open_positions", int),
    "MAX_DAILY_TRADES": ("monitor", "max_daily_trades", int),
    "MAX_TOTAL_INVESTED": ("monitor", "max_total_invested", float),
    "MONITOR_INTERVAL_SECONDS": ("monitor", "interval_seconds", float),
    "MARKET_DATA_CACHE_TTL": ("market_data", "cache_ttl_seconds", float),
    "MARKET_DATA_MIN_INTERVAL": ("market_data", "min_interval_seconds", float),
    "MARKET_DATA_TIMEOUT": ("market_data", "timeout_seconds", float),
}


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    """Override YAML values with environment variables where set."""
    for env_key, mapping in _ENV_MAPPINGS.items():
        value = os.getenv(env_key)
        if value is None:
            continue
        section, key = mapping[0], mapping[1]
        converter = mapping[2] if len(mapping) > 2 else str
        try:
            if not isinstance(config.get(section), dict):
                config[section] = {}
            config[section][key] = converter(value)
        except (ValueError, TypeError) as e:
            logging.getLogger("config").warning(
                "Env %s=%r failed to convert: %s. Using YAML value.",
                env_key, value, e,
            )


# ---------------------------------------------------------------------------
# Pydantic Configuration Models
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    name: str = "council"
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    json_logs: bool = False


class IndicatorConfig(BaseModel):
    min_candles: int = 15
    max_candles: int = 200
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    ma_fast: int = 5
    ma_mid: int = 10
    ma_slow: int = 20
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_std: float = 2.0
    bb_squeeze_pct: float = 4.0
    atr_period: int = 14
    obv_lookback: int = 10
    vwap_band_pct: float = 2.0
    volume_spike_ratio: float = 2.0
    # Heuristic constants, tunable
    whale_percentile: float = 90.0
    whale_ratio: float = 1.5

    @field_validator("whale_percentile")
    @classmethod
    def validate_percentile(cls, v):
        if v <= 0 or v >= 100:
            raise ValueError("whale_percentile must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def validate_windows(self):
        if self.macd_fast >= self.macd_slow:
            raise ValueError("macd_fast must be shorter than macd_slow")
        if self.min_candles > self.max_candles:
            raise ValueError("min_candles must not exceed max_candles")
        return self


class ExitLiquidityConfig(BaseModel):
    safe_slippage: float = 0.02
    moderate_slippage: float = 0.05
    risky_slippage: float = 0.10
    danger_slippage: float = 0.20
    max_exit_impact: float = 0.50
    panic_multiplier: float = 2.5
    exit_rate_per_minute: float = 0.02
    min_lp_ratio: float = 0.03
    min_liquidity: float = 200.0

    @model_validator(mode="after")
    def validate_tiers(self):
        tiers = [self.safe_slippage, self.moderate_slippage, self.risky_slippage, self.danger_slippage]
        if any(t <= 0 or t >= 1 for t in tiers):
            raise ValueError("slippage tiers must be in (0, 1)")
        if tiers != sorted(tiers):
            raise ValueError("slippage tiers must be increasing")
        if self.panic_multiplier < 1:
            raise ValueError("panic_multiplier must be >= 1")
        return self


class MentalStateConfig(BaseModel):
    reset_policy: str = "utc_day"
    fatigue_recovery: float = 30.0

    @field_validator("reset_policy")
    @classmethod
    def validate_policy(cls, v):
        if v not in ("utc_day", "rolling_24h"):
            raise ValueError("reset_policy must be 'utc_day' or 'rolling_24h'")
        return v


class MonitorConfig(BaseModel):
    take_profit_pct: float = 50.0
    stop_loss_pct: float = -30.0
    max_hold_hours: float = 24.0
    max_open_positions: int = 5
    max_daily_trades: int = 20
    max_total_invested: float = 100.0
    # Position value that consumes the whole daily risk budget
    risk_unit: float = 10.0
    interval_seconds: float = 30.0
    inter_item_delay_seconds: float = 0.0

    @field_validator("take_profit_pct")
    @classmethod
    def validate_take_profit(cls, v):
        if v <= 0:
            raise ValueError("take_profit_pct must be positive")
        return v

    @field_validator("stop_loss_pct")
    @classmethod
    def validate_stop_loss(cls, v):
        if v >= 0:
            raise ValueError("stop_loss_pct must be negative")
        return v

    @field_validator("risk_unit")
    @classmethod
    def validate_risk_unit(cls, v):
        if v <= 0:
            raise ValueError("risk_unit must be positive")
        return v

    @field_validator("max_open_positions", "max_daily_trades")
    @classmethod
    def validate_caps(cls, v):
        if v < 1:
            raise ValueError("position and trade caps must be at least 1")
        return v


class MarketDataConfig(BaseModel):
    cache_ttl_seconds: float = 30.0
    min_interval_seconds: float = 0.5
    timeout_seconds: float = 10.0


class CouncilConfig(BaseModel):
    """Master configuration model with full validation."""
    app: AppConfig = Field(default_factory=AppConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    exit_liquidity: ExitLiquidityConfig = Field(default_factory=ExitLiquidityConfig)
    mental_state: MentalStateConfig = Field(default_factory=MentalStateConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    # Extra or overriding agent profiles, keyed by agent id
    agents: Dict[str, AgentProfile] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fill_agent_ids(cls, data):
        if isinstance(data, dict) and isinstance(data.get("agents"), dict):
            agents = {}
            for agent_id, profile in data["agents"].items():
                if isinstance(profile, dict):
                    profile = {"agent_id": agent_id, **profile}
                agents[agent_id] = profile
            data = {**data, "agents": agents}
        return data


# ---------------------------------------------------------------------------
# Configuration Manager (Singleton)
# ---------------------------------------------------------------------------

def _read_yaml(config_path: str) -> Dict[str, Any]:
    config_file = Path(config_path)
    if not config_file.exists():
        return {}
    with open(config_file, "r") as f:
        return yaml.safe_load(f) or {}


class ConfigManager:
    """
    Thread-safe configuration manager with reload support.

    Loads configuration from YAML file, then overlays environment
    variables. Validates all values through pydantic models.
    """

    _instance: Optional[ConfigManager] = None
    _config: Optional[CouncilConfig] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load()

    def load(self, config_path: str = "config/config.yaml") -> CouncilConfig:
        """Load configuration from YAML + environment variables."""
        load_dotenv()
        yaml_config = _read_yaml(config_path)
        _apply_env_overrides(yaml_config)
        ConfigManager._config = CouncilConfig(**yaml_config)
        return ConfigManager._config

    @property
    def config(self) -> CouncilConfig:
        """Get the current validated configuration."""
        if self._config is None:
            self.load()
        return self._config

    def reload(self, config_path: str = "config/config.yaml") -> CouncilConfig:
        """Reload configuration from disk."""
        return self.load(config_path)

    def get(self, dotpath: str, default: Any = None) -> Any:
        """
        Access config values using dot notation.

        Example: config.get("monitor.take_profit_pct") -> 50.0
        """
        obj = self._config
        for key in dotpath.split("."):
            if hasattr(obj, key):
                obj = getattr(obj, key)
            elif isinstance(obj, dict) and key in obj:
                obj = obj[key]
            else:
                return default
        return obj

    def to_dict(self) -> Dict[str, Any]:
        """Export full config as dictionary."""
        return self._config.model_dump() if self._config else {}

    @classmethod
    def reset(cls) -> None:
        """Drop the cached instance (tests and reload-from-scratch)."""
        with cls._lock:
            cls._instance = None
            cls._config = None


def get_config() -> CouncilConfig:
    """Get the global configuration instance."""
    return ConfigManager().config


def load_config_with_overrides(
    config_path: str = "config/config.yaml",
    overrides: Optional[Dict[str, Any]] = None,
) -> CouncilConfig:
    """Load a fresh config (YAML + env) with optional deep overrides."""
    load_dotenv()
    yaml_config = _read_yaml(config_path)
    _apply_env_overrides(yaml_config)

    def _deep_update(dst: Dict[str, Any], src: Dict[str, Any]) -> None:
        for key, value in (src or {}).items():
            if isinstance(value, dict) and isinstance(dst.get(key), dict):
                _deep_update(dst[key], value)
            else:
                dst[key] = value

    if overrides:
        _deep_update(yaml_config, overrides)

    return CouncilConfig(**yaml_config)
