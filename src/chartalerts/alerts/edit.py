# src/chartalerts/alerts/edit.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import structlog

from chartalerts.alerts.conditions import AlertCondition, condition_options
from chartalerts.alerts.models import DEFAULT_NOTIFICATION_SETTINGS, AlertNotificationSettings
from chartalerts.alerts.state import AlertStore
from chartalerts.utils.types import ToolType

log = structlog.get_logger("alert_edit")


@dataclass(slots=True)
class AlertEditData:
    """What the edit surface is opened with and hands back on save."""
    alert_id: str
    price: float
    condition: AlertCondition
    symbol: str
    exchange: Optional[str] = None
    is_trendline: bool = False
    tool_type: Optional[ToolType] = None
    notifications: Optional[AlertNotificationSettings] = None

    def options(self) -> tuple[AlertCondition, ...]:
        return condition_options(self.tool_type)


def edit_data_for(store: AlertStore, alert_id: str) -> Optional[AlertEditData]:
    alert = store.get(alert_id)
    if alert is None:
        return None
    return AlertEditData(
        alert_id=alert.id,
        price=alert.price,
        condition=alert.condition,
        symbol=alert.symbol or store.symbol or "",
        exchange=alert.exchange or store.exchange,
        is_trendline=alert.is_tool and alert.tool_type == "line",
        tool_type=alert.tool_type,
        notifications=alert.notifications or DEFAULT_NOTIFICATION_SETTINGS,
    )


def apply_edit(store: AlertStore, data: AlertEditData) -> bool:
    """
    Apply a saved edit through AlertStore.update_alert. The condition must
    be one the surface was allowed to offer; an unparsable price keeps the
    alert's current one. Returns False if the alert no longer exists.
    """
    alert = store.get(data.alert_id)
    if alert is None:
        log.info("edit_for_missing_alert", alert_id=data.alert_id)
        return False
    allowed = condition_options(alert.tool_type)
    if data.condition not in allowed:
        raise ValueError(f"condition {data.condition!r} not offered for this alert (allowed: {allowed})")
    price = data.price
    if data.is_trendline or price is None or not math.isfinite(price):
        price = alert.price
    store.update_alert(data.alert_id, price, data.condition, data.notifications)
    return True
