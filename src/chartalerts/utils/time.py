from __future__ import annotations

import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

# --- fast, allocation-free time helpers ---

def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()

def utc_now_ms() -> int:
    """Unix epoch milliseconds (int), the unit persisted alert records use."""
    return time.time_ns() // 1_000_000

def normalize_epoch_s(ts: float | int) -> float:
    """Accept epoch seconds, ms or ns and return seconds."""
    ts = float(ts)
    if ts > 1e17:   # ns
        return ts / 1e9
    if ts > 1e11:   # ms
        return ts / 1e3
    return ts

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def clock_hms(ts: float | int, tz_name: str | None = None) -> str:
    """HH:MM:SS wall-clock string for an epoch-seconds timestamp."""
    tz = ZoneInfo(tz_name) if tz_name else None
    return datetime.fromtimestamp(float(ts), tz).strftime("%H:%M:%S")
