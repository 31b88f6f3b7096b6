# src/chartalerts/alerts/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from chartalerts.alerts.conditions import AlertCondition
from chartalerts.utils.time import utc_now_ms
from chartalerts.utils.types import AlertKind, PricePosition, ToolType, WebhookMode

OrderAction = Literal["BUY", "SELL"]
OrderProduct = Literal["MIS", "CNC", "NRML"]
OrderPriceType = Literal["MARKET", "LIMIT"]

DEFAULT_MESSAGE = "{{symbol}} {{condition}} {{price}}"


@dataclass(slots=True, frozen=True)
class AlertNotificationSettings:
    """
    How the user hears about a trigger. The openalgo_* fields only matter
    when webhook_mode == "openalgo".
    """
    show_toast: bool = True
    play_sound: bool = True
    webhook_enabled: bool = False
    webhook_mode: WebhookMode = "openalgo"
    webhook_url: Optional[str] = None
    message: str = DEFAULT_MESSAGE
    openalgo_action: OrderAction = "BUY"
    openalgo_product: OrderProduct = "MIS"
    openalgo_quantity: int = 1
    openalgo_pricetype: OrderPriceType = "MARKET"


DEFAULT_NOTIFICATION_SETTINGS = AlertNotificationSettings()


@dataclass(slots=True)
class Alert:
    id: str
    price: float
    condition: AlertCondition = "crossing"
    kind: AlertKind = "price"
    # None until captured (at creation when the market price is known, else on first evaluation)
    initial_price_position: Optional[PricePosition] = None
    notifications: Optional[AlertNotificationSettings] = None
    symbol: Optional[str] = None
    exchange: Optional[str] = None
    # non-owning link into the drawing registry; tool alerts only
    tool_id: Optional[str] = None
    tool_type: Optional[ToolType] = None
    created_at: int = field(default_factory=utc_now_ms)

    @property
    def settings(self) -> AlertNotificationSettings:
        return self.notifications or DEFAULT_NOTIFICATION_SETTINGS

    @property
    def is_tool(self) -> bool:
        return self.kind == "tool"
