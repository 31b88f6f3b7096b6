# src/chartalerts/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from chartalerts.notify.dispatcher import ToastConfig
from chartalerts.notify.sound import AlarmConfig
from chartalerts.notify.webhook import WebhookConfig

ENV_PREFIX = "CHARTALERTS_"


@dataclass(slots=True)
class FeedConfig:
    stream_url: str = "ws://127.0.0.1:8765/prices"
    symbols: list[str] = field(default_factory=list)
    # reconnect behavior
    initial_backoff_s: float = 0.25
    max_backoff_s: float = 30.0
    # timeouts
    open_timeout_s: float = 5.0
    ping_interval_s: float = 20.0


@dataclass(slots=True)
class EngineConfig:
    symbol: Optional[str] = None
    exchange: Optional[str] = None
    alerts_path: Optional[str] = None       # JSON file; None disables persistence
    tz_name: str = "Asia/Kolkata"
    feed: FeedConfig = field(default_factory=FeedConfig)
    toast: ToastConfig = field(default_factory=ToastConfig)
    alarm: AlarmConfig = field(default_factory=AlarmConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    return v if v not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None


def config_from_env() -> EngineConfig:
    """
    Build EngineConfig from CHARTALERTS_* variables. Call load_dotenv()
    first if a .env file should be honored.
    """
    symbols_env = _env("SYMBOLS", "") or ""
    symbols = [s.strip().upper() for s in symbols_env.split(",") if s.strip()]
    tz_name = _env("TZ", "Asia/Kolkata")
    exchange = _env("EXCHANGE")

    feed = FeedConfig(symbols=symbols)
    feed.stream_url = _env("FEED_URL", feed.stream_url)

    return EngineConfig(
        symbol=symbols[0] if len(symbols) == 1 else None,
        exchange=exchange,
        alerts_path=_env("ALERTS_PATH"),
        tz_name=tz_name,
        feed=feed,
        toast=ToastConfig(auto_dismiss_s=_env_float("TOAST_AUTO_DISMISS_S", 60.0)),
        webhook=WebhookConfig(
            timeout_s=_env_float("WEBHOOK_TIMEOUT_S", 8.0),
            openalgo_url=_env("OPENALGO_URL", WebhookConfig().openalgo_url),
            default_exchange=exchange or "NSE",
            tz_name=tz_name,
        ),
    )
