from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sigmon.utils.errors import ConfigError
from sigmon.utils.time import interval_seconds

DEFAULT_WS_URL = "wss://ws.twelvedata.com/v1/quotes/price"
DEFAULT_REST_URL = "https://api.twelvedata.com"

_TRUE = ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class Settings:
    api_key: str
    ws_url: str = DEFAULT_WS_URL
    rest_url: str = DEFAULT_REST_URL
    symbols: tuple[str, ...] = ("XAU/USD",)
    interval: str = "1min"
    granularity_s: int = 60
    max_points: int = 2000
    # indicators
    rsi_period: int = 14
    macd: tuple[int, int, int] = (12, 26, 9)
    stochastic: tuple[int, int, int] = (14, 3, 3)
    bollinger: tuple[int, float] = (20, 2.0)
    # reconnect
    reconnect_base_s: float = 3.0
    reconnect_factor: float = 1.5
    reconnect_max_s: float = 60.0
    reconnect_max_attempts: int = 10
    # rules
    database_url: Optional[str] = None
    rules_file: Optional[str] = None
    rules_refresh_s: float = 60.0
    # sinks
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    alert_tz: str = "UTC"
    # redis mirror
    redis_url: str = "redis://localhost:6379/0"
    redis_mirror: bool = False
    # logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


def _str(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = _str(env, name)
    if raw is None:
        return default
    try:
        v = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if v < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {v}")
    return v


def _float(env: Mapping[str, str], name: str, default: float, minimum: float = 0.0) -> float:
    raw = _str(env, name)
    if raw is None:
        return default
    try:
        v = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if v != v or v < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {raw!r}")
    return v


def _bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = _str(env, name)
    return default if raw is None else raw.lower() in _TRUE


def _tz(env: Mapping[str, str], name: str, default: str = "UTC") -> str:
    raw = _str(env, name, default)
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"{name} is not a known time zone, got {raw!r}") from None
    return raw


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables. Raises ConfigError on anything invalid."""
    env = os.environ if env is None else env

    api_key = _str(env, "TWELVE_DATA_API_KEY")
    if not api_key:
        raise ConfigError("TWELVE_DATA_API_KEY is required")

    symbols_raw = _str(env, "SYMBOLS") or _str(env, "SYMBOL") or "XAU/USD"
    symbols = tuple(s.strip().upper() for s in symbols_raw.split(",") if s.strip())
    if not symbols:
        raise ConfigError("SYMBOLS must name at least one symbol")

    interval = _str(env, "INTERVAL", "1min")
    try:
        granularity = interval_seconds(interval)
    except ValueError as e:
        raise ConfigError(str(e)) from None

    return Settings(
        api_key=api_key,
        ws_url=_str(env, "TWELVE_DATA_WS_URL", DEFAULT_WS_URL),
        rest_url=_str(env, "TWELVE_DATA_REST_URL", DEFAULT_REST_URL),
        symbols=symbols,
        interval=interval,
        granularity_s=granularity,
        max_points=_int(env, "MAX_POINTS", 2000),
        rsi_period=_int(env, "RSI_PERIOD", 14),
        macd=(
            _int(env, "MACD_FAST", 12),
            _int(env, "MACD_SLOW", 26),
            _int(env, "MACD_SIGNAL", 9),
        ),
        stochastic=(
            _int(env, "STOCHASTIC_K", 14),
            _int(env, "STOCHASTIC_D", 3),
            _int(env, "STOCHASTIC_SMOOTHING", 3),
        ),
        bollinger=(_int(env, "BB_PERIOD", 20), _float(env, "BB_STDDEV", 2.0)),
        reconnect_base_s=_float(env, "RECONNECT_BASE_S", 3.0),
        reconnect_factor=_float(env, "RECONNECT_FACTOR", 1.5, minimum=1.0),
        reconnect_max_s=_float(env, "RECONNECT_MAX_S", 60.0),
        reconnect_max_attempts=_int(env, "RECONNECT_MAX_ATTEMPTS", 10, minimum=0),
        database_url=_str(env, "DATABASE_URL"),
        rules_file=_str(env, "RULES_FILE"),
        rules_refresh_s=_float(env, "RULES_REFRESH_S", 60.0, minimum=1.0),
        telegram_bot_token=_str(env, "TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_str(env, "TELEGRAM_CHAT_ID"),
        alert_tz=_tz(env, "ALERT_TZ"),
        redis_url=_str(env, "REDIS_URL", "redis://localhost:6379/0"),
        redis_mirror=_bool(env, "REDIS_MIRROR"),
        log_level=(_str(env, "LOG_LEVEL", "INFO") or "INFO").upper(),
        log_json=_bool(env, "LOG_JSON"),
    )
