# src/chartalerts/alerts/state.py
from __future__ import annotations

import math
import random
from dataclasses import replace
from typing import Any, Callable, Optional

import structlog

from chartalerts.alerts import codec
from chartalerts.alerts.conditions import (
    AlertCondition,
    condition_options,
    parse_condition,
    position_of,
)
from chartalerts.alerts.delegate import Delegate
from chartalerts.alerts.models import Alert, AlertNotificationSettings
from chartalerts.utils.types import PricePosition, ToolType

log = structlog.get_logger("alert_store")


def _random_id() -> str:
    return format(random.randint(0, 1_000_000), "x")


def _check_price(price: float) -> float:
    price = float(price)
    if not math.isfinite(price):
        raise ValueError(f"alert price must be finite, got {price!r}")
    return price


class AlertStore:
    """
    Sole owner of the alert set. Every mutation goes through here and is
    announced on the delegates:
      - alert_added(Alert) / alert_removed(id) / alert_changed(Alert) per alert
      - alerts_changed() once per operation (import/clear fire only this one)

    Operations on unknown ids are no-ops.
    """
    def __init__(
        self,
        symbol: Optional[str] = None,
        exchange: Optional[str] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.symbol = symbol
        self.exchange = exchange
        self._id_factory = id_factory or _random_id
        self._alerts: dict[str, Alert] = {}
        self._sorted: list[Alert] = []

        self.alert_added: Delegate[Alert] = Delegate("alert_added")
        self.alert_removed: Delegate[str] = Delegate("alert_removed")
        self.alert_changed: Delegate[Alert] = Delegate("alert_changed")
        self.alerts_changed: Delegate[None] = Delegate("alerts_changed")
        self.alerts_changed.subscribe(lambda _: self._resort(), owner=self)

    def destroy(self) -> None:
        for d in (self.alert_added, self.alert_removed, self.alert_changed, self.alerts_changed):
            d.clear()

    # ---------- creation ----------

    def add_alert(self, price: float, *, market_price: Optional[float] = None) -> str:
        return self.add_alert_with_condition(price, "crossing", market_price=market_price)

    def add_alert_with_condition(
        self,
        price: float,
        condition: AlertCondition,
        *,
        market_price: Optional[float] = None,
    ) -> str:
        alert = Alert(
            id=self._new_id(),
            price=_check_price(price),
            condition=parse_condition(condition),
            symbol=self.symbol,
            exchange=self.exchange,
        )
        if market_price is not None:
            alert.initial_price_position = position_of(float(market_price), alert.price)
        return self._insert(alert)

    def add_tool_alert(
        self,
        tool_id: str,
        condition: AlertCondition,
        price: float,
        tool_type: ToolType = "line",
    ) -> str:
        """Bind an alert to an externally owned drawing, referenced by id only."""
        condition = parse_condition(condition)
        if condition not in condition_options(tool_type):
            raise ValueError(f"condition {condition!r} not allowed for {tool_type} tools")
        alert = Alert(
            id=self._new_id(),
            price=_check_price(price),
            condition=condition,
            kind="tool",
            symbol=self.symbol,
            exchange=self.exchange,
            tool_id=tool_id,
            tool_type=tool_type,
        )
        return self._insert(alert)

    # ---------- mutation ----------

    def remove_alert(self, alert_id: str) -> None:
        if self._alerts.pop(alert_id, None) is None:
            return
        log.info("alert_removed", alert_id=alert_id)
        self.alert_removed.fire(alert_id)
        self.alerts_changed.fire()

    def update_alert_price(self, alert_id: str, price: float) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return
        alert.price = _check_price(price)
        alert.initial_price_position = None
        self._changed(alert)

    def update_alert(
        self,
        alert_id: str,
        price: float,
        condition: AlertCondition,
        notifications: Optional[AlertNotificationSettings] = None,
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return
        alert.price = _check_price(price)
        alert.condition = parse_condition(condition)
        alert.initial_price_position = None
        if notifications is not None:
            alert.notifications = notifications
        self._changed(alert)

    def set_alert_context(self, alert_id: str, symbol: Optional[str], exchange: Optional[str] = None) -> None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return
        alert.symbol = symbol
        alert.exchange = exchange
        self._changed(alert)

    def mark_price_position(self, alert_id: str, position: PricePosition) -> None:
        """Evaluator bookkeeping; not a user edit, so no change events fire."""
        alert = self._alerts.get(alert_id)
        if alert is not None:
            alert.initial_price_position = position

    def clear_alerts(self) -> None:
        if not self._alerts:
            return
        self._alerts.clear()
        self.alerts_changed.fire()

    # ---------- queries ----------

    def alerts(self) -> list[Alert]:
        """Alerts sorted by price, highest first."""
        return list(self._sorted)

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def snapshot(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return replace(alert) if alert is not None else None

    def __contains__(self, alert_id: object) -> bool:
        return alert_id in self._alerts

    def __len__(self) -> int:
        return len(self._alerts)

    # ---------- persistence ----------

    def export_alerts(self) -> list[codec.SerializableAlert]:
        return codec.export_records(self._alerts.values())

    def import_alerts(self, records: Any) -> int:
        """
        Add every well-formed, not-yet-triggered price alert in `records`.
        A record whose id is already present replaces that alert and fires
        alert_changed for it; new alerts get no per-alert added event.
        alerts_changed fires once. Returns the number imported.
        """
        if not isinstance(records, list):
            return 0
        alerts = codec.decode_records(records)
        replaced: list[Alert] = []
        for alert in alerts:
            if alert.id in self._alerts:
                replaced.append(alert)
            self._alerts[alert.id] = alert
        for alert in replaced:
            self.alert_changed.fire(alert)
        if records:
            self.alerts_changed.fire()
        log.info("alerts_imported", imported=len(alerts), skipped=len(records) - len(alerts))
        return len(alerts)

    # ---------- internals ----------

    def _insert(self, alert: Alert) -> str:
        self._alerts[alert.id] = alert
        log.info("alert_added", alert_id=alert.id, price=alert.price, condition=alert.condition, kind=alert.kind)
        self.alert_added.fire(alert)
        self.alerts_changed.fire()
        return alert.id

    def _changed(self, alert: Alert) -> None:
        self.alert_changed.fire(alert)
        self.alerts_changed.fire()

    def _new_id(self) -> str:
        # ids are small random hex strings; retry until unused
        aid = self._id_factory()
        while aid in self._alerts:
            aid = self._id_factory()
        return aid

    def _resort(self) -> None:
        self._sorted = sorted(self._alerts.values(), key=lambda a: a.price, reverse=True)
