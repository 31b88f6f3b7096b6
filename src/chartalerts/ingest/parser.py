from __future__ import annotations
from typing import Optional
from chartalerts.utils.types import PriceUpdate
from chartalerts.utils.time import normalize_epoch_s, utc_now_s

PRICE_TYPES = ("price", "p", "tick", "t", "trade", "bar", "b")

def parse_price_msg(m: dict) -> Optional[PriceUpdate]:
    """
    Return PriceUpdate if `m` is a price message; else None.

    Accepted shapes (long or short keys):
      - {"type": "price", "symbol": "NIFTY", "price": 22150.5, "ts": 1700000000}
      - {"T": "t", "S": "NIFTY", "p": 22150.5, "t": 1700000000123}
      - bars: {"type": "bar", "symbol": ..., "close": ..., "ts": ...}
    Timestamps may be epoch s/ms/ns or ISO-8601; missing -> now.
    """
    T = m.get("type") or m.get("T")
    if T not in PRICE_TYPES:
        return None

    sym = m.get("symbol") or m.get("S")
    close = m.get("close", m.get("c"))
    px = m.get("price", m.get("p"))
    if px is None:
        px = close
    ts = m.get("ts", m.get("t", m.get("timestamp")))

    if sym is None or px is None or isinstance(px, bool):
        return None

    if isinstance(ts, str):
        try:
            import datetime
            ts = datetime.datetime.fromisoformat(ts.replace("Z", "+00:00")).timestamp()
        except ValueError:
            ts = utc_now_s()
    elif isinstance(ts, (int, float)) and not isinstance(ts, bool):
        ts = normalize_epoch_s(ts)
    else:
        ts = utc_now_s()

    return PriceUpdate(
        symbol=str(sym).upper(),
        price=float(px),
        ts=float(ts),
        close=float(close) if close is not None else None,
    )
