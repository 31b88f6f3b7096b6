from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

# ---- feed-level primitives ----

@dataclass(slots=True, frozen=True)
class PriceUpdate:
    symbol: str
    price: float
    ts: float                       # epoch seconds
    close: Optional[float] = None   # bar close when the feed sends bars; else None

    @property
    def close_price(self) -> float:
        return self.price if self.close is None else self.close

# ---- alerting domain ----

AlertKind = Literal["price", "tool"]
PricePosition = Literal["above", "below", "unknown"]
Direction = Literal["up", "down"]
ToolType = Literal["line", "shape", "vertical"]
WebhookMode = Literal["openalgo", "custom"]
