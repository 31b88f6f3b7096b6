# src/chartalerts/alerts/geometry.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Union

from chartalerts.alerts.delegate import Delegate

# ---- drawing shapes, as the chart reports them after each recompute ----

@dataclass(slots=True, frozen=True)
class LevelGeometry:
    """Horizontal line / price point."""
    price: float

    def level_at(self, ts: float) -> float:
        return self.price


@dataclass(slots=True, frozen=True)
class TrendlineGeometry:
    """
    Line through (t1, p1) and (t2, p2), times in epoch seconds.
    Outside [t1, t2] the line is extended when `extend` is set, otherwise
    clamped to the nearest endpoint value.
    """
    t1: float
    p1: float
    t2: float
    p2: float
    extend: bool = True

    def level_at(self, ts: float) -> float:
        if self.t2 == self.t1:
            return self.p2
        if not self.extend:
            lo, hi = sorted((self.t1, self.t2))
            ts = min(max(ts, lo), hi)
        slope = (self.p2 - self.p1) / (self.t2 - self.t1)
        return self.p1 + slope * (ts - self.t1)


@dataclass(slots=True, frozen=True)
class VerticalGeometry:
    """Vertical marker: a threshold on the time axis."""
    time: float


@dataclass(slots=True, frozen=True)
class ZoneGeometry:
    """Price band, optionally bounded in time (rectangles)."""
    low: float
    high: float
    start: Optional[float] = None
    end: Optional[float] = None

    def contains(self, price: float, ts: float) -> bool:
        lo, hi = sorted((self.low, self.high))
        if not (lo <= price <= hi):
            return False
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


Geometry = Union[LevelGeometry, TrendlineGeometry, VerticalGeometry, ZoneGeometry]


class ToolRegistry(Protocol):
    def resolve(self, tool_id: str) -> Optional[Geometry]: ...


class InMemoryToolRegistry:
    """
    Drawing-id -> current geometry. The chart owns the drawings; it pushes
    the latest shape here on every recompute and removes it on delete.
    Alerts only ever hold the id.
    """
    def __init__(self):
        self._shapes: dict[str, Geometry] = {}
        self.recomputed: Delegate[str] = Delegate("tool_recomputed")

    def put(self, tool_id: str, geometry: Geometry) -> None:
        self._shapes[tool_id] = geometry
        self.recomputed.fire(tool_id)

    def on_recompute(self, tool_id: str, geometry: Geometry) -> None:
        # callback handed to the drawing layer
        self.put(tool_id, geometry)

    def remove(self, tool_id: str) -> None:
        self._shapes.pop(tool_id, None)

    def resolve(self, tool_id: str) -> Optional[Geometry]:
        return self._shapes.get(tool_id)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._shapes
