# src/chartalerts/alerts/evaluator.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from chartalerts.alerts.conditions import (
    AlertCondition,
    crossing_fires,
    is_region,
    position_of,
    zone_fires,
)
from chartalerts.alerts.geometry import (
    Geometry,
    LevelGeometry,
    ToolRegistry,
    TrendlineGeometry,
    VerticalGeometry,
    ZoneGeometry,
)
from chartalerts.alerts.models import Alert, AlertNotificationSettings
from chartalerts.alerts.state import AlertStore
from chartalerts.utils.types import Direction, PricePosition, PriceUpdate

log = structlog.get_logger("evaluator")


@dataclass(slots=True, frozen=True)
class TriggerEvent:
    """One confirmed condition match, handed from the evaluator to the dispatcher."""
    alert_id: str
    symbol: str
    exchange: Optional[str]
    direction: Direction
    price: str              # threshold as displayed
    numeric_price: float
    close_price: float
    timestamp: float        # epoch seconds of the tick that fired
    condition: AlertCondition


TriggerSink = Callable[[TriggerEvent, AlertNotificationSettings], None]


@dataclass(slots=True)
class AlertRuntimeState:
    last_position: Optional[PricePosition] = None   # scalar alerts
    inside: Optional[bool] = None                   # region alerts
    last_price: Optional[float] = None


class TriggerEvaluator:
    """
    Runs every alert in the store against each price observation.

    Scalar alerts (crossing / crossing_up / crossing_down) track which side
    of the threshold the last observation was on and fire on a matching
    side change. The first observation only records the side, so an alert
    placed while the market is already past the line stays quiet. After a
    real crossing the alert's initial position is set to "unknown" and it
    stays armed for the next crossing.

    Region alerts track an inside/outside flag: inside/outside fire on
    every matching observation, entering/exiting on the flip only.

    Tool alerts look their drawing up by id on every tick; a missing
    drawing skips the alert for that tick.

    Inputs:
      - store:     AlertStore (read + position bookkeeping)
      - registry:  ToolRegistry for tool-bound alerts
      - emit:      TriggerSink, called synchronously in tick order
    """
    def __init__(
        self,
        store: AlertStore,
        registry: Optional[ToolRegistry] = None,
        emit: Optional[TriggerSink] = None,
        price_fmt: str = "{:.2f}",
    ):
        self.store = store
        self.registry = registry
        self.emit = emit
        self.price_fmt = price_fmt
        self._states: dict[str, AlertRuntimeState] = {}
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        # edits and removals invalidate what we remember about an alert
        store.alert_changed.subscribe(lambda a: self.reset(a.id), owner=self)
        store.alert_removed.subscribe(self.reset, owner=self)
        store.alerts_changed.subscribe(lambda _: self._prune(), owner=self)

    def detach(self) -> None:
        for d in (self.store.alert_changed, self.store.alert_removed, self.store.alerts_changed):
            d.unsubscribe_all(self)
        self._states.clear()

    # ---------- queue driver ----------

    async def start(self, q_prices: asyncio.Queue) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(q_prices), name="alerts-evaluator")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.warning("evaluator_task_failed", err=str(e))
            self._task = None

    async def _loop(self, q_prices: asyncio.Queue) -> None:
        try:
            while not self._stop.is_set():
                update: PriceUpdate = await q_prices.get()
                try:
                    self.evaluate(update)
                except Exception as e:
                    log.warning("evaluate_failed", symbol=update.symbol, err=str(e) or type(e).__name__)
        except asyncio.CancelledError:
            return

    # ---------- core evaluation ----------

    def reset(self, alert_id: str) -> None:
        self._states.pop(alert_id, None)

    def state_of(self, alert_id: str) -> Optional[AlertRuntimeState]:
        return self._states.get(alert_id)

    def evaluate(self, update: PriceUpdate) -> list[TriggerEvent]:
        """Evaluate all alerts for this symbol; emits and returns fired events."""
        fired: list[TriggerEvent] = []
        for alert in self.store.alerts():
            if self.store.get(alert.id) is not alert:
                # removed or replaced by a listener earlier in this tick
                continue
            if alert.symbol and alert.symbol != update.symbol:
                continue
            evt = self.evaluate_alert(alert, update)
            if evt is not None:
                fired.append(evt)
                self._emit(evt, alert.settings)
        return fired

    def evaluate_alert(self, alert: Alert, update: PriceUpdate) -> Optional[TriggerEvent]:
        geom = self._geometry_for(alert)
        if geom is None:
            log.debug("alert_skipped_no_geometry", alert_id=alert.id, tool_id=alert.tool_id)
            return None

        st = self._states.get(alert.id)
        if st is None:
            st = AlertRuntimeState()
            self._states[alert.id] = st
        prev_price = st.last_price
        st.last_price = update.price

        if is_region(alert.condition):
            if not isinstance(geom, ZoneGeometry):
                log.debug("alert_skipped_not_a_zone", alert_id=alert.id)
                return None
            inside = geom.contains(update.price, update.ts)
            was_inside = st.inside
            st.inside = inside
            if not zone_fires(alert.condition, was_inside, inside):
                return None
            direction = _move_direction(prev_price, update.price)
            return self._event(alert, update, direction, update.price)

        if isinstance(geom, ZoneGeometry):
            log.debug("alert_skipped_zone_for_scalar", alert_id=alert.id)
            return None
        if isinstance(geom, VerticalGeometry):
            observed, threshold = update.ts, geom.time
        else:
            observed, threshold = update.price, geom.level_at(update.ts)

        pos = position_of(observed, threshold)
        prev = st.last_position
        st.last_position = pos
        if prev is None:
            # creation tick: record where the market is, never fire
            if alert.initial_price_position is None:
                self.store.mark_price_position(alert.id, pos)
            return None
        if not crossing_fires(alert.condition, prev, pos):
            return None

        self.store.mark_price_position(alert.id, "unknown")
        if isinstance(geom, VerticalGeometry):
            return self._event(alert, update, _move_direction(prev_price, update.price), update.price)
        return self._event(alert, update, "up" if pos == "above" else "down", threshold)

    # ---------- helpers ----------

    def _geometry_for(self, alert: Alert) -> Optional[Geometry]:
        if not alert.is_tool:
            return LevelGeometry(alert.price)
        if self.registry is None or alert.tool_id is None:
            return None
        return self.registry.resolve(alert.tool_id)

    def _event(self, alert: Alert, update: PriceUpdate, direction: Direction, level: float) -> TriggerEvent:
        return TriggerEvent(
            alert_id=alert.id,
            symbol=alert.symbol or update.symbol,
            exchange=alert.exchange,
            direction=direction,
            price=self.price_fmt.format(level),
            numeric_price=float(level),
            close_price=update.close_price,
            timestamp=update.ts,
            condition=alert.condition,
        )

    def _emit(self, evt: TriggerEvent, settings: AlertNotificationSettings) -> None:
        log.info("alert_triggered", alert_id=evt.alert_id, condition=evt.condition,
                 direction=evt.direction, price=evt.numeric_price, close=evt.close_price)
        if self.emit is None:
            return
        try:
            self.emit(evt, settings)
        except Exception as e:
            log.warning("alert_dispatch_failed", alert_id=evt.alert_id, err=str(e) or type(e).__name__)

    def _prune(self) -> None:
        # import/clear only fire the aggregate event
        for aid in [k for k in self._states if k not in self.store]:
            del self._states[aid]


def _move_direction(prev: Optional[float], curr: float) -> Direction:
    if prev is None:
        return "up"
    return "up" if curr >= prev else "down"
