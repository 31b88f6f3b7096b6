from __future__ import annotations

import re
from typing import Optional

from chartalerts.alerts.conditions import CONDITION_LABELS
from chartalerts.alerts.evaluator import TriggerEvent
from chartalerts.alerts.models import DEFAULT_MESSAGE
from chartalerts.utils.time import clock_hms

_VAR = re.compile(r"\{\{\s*(\w+)\s*\}\}")

TEMPLATE_VARIABLES = ("symbol", "exchange", "price", "direction", "condition", "time", "close")


def condition_label(condition: str) -> str:
    return CONDITION_LABELS.get(condition, "Crossing")


def template_values(evt: TriggerEvent, tz_name: Optional[str] = None, default_exchange: str = "NSE") -> dict[str, str]:
    return {
        "symbol": evt.symbol,
        "exchange": evt.exchange or default_exchange,
        "price": evt.price,
        "direction": evt.direction,
        "condition": evt.condition,
        "time": clock_hms(evt.timestamp, tz_name),
        "close": f"{evt.close_price:.2f}",
    }


def render_message(template: Optional[str], evt: TriggerEvent, tz_name: Optional[str] = None,
                   default_exchange: str = "NSE") -> str:
    """Substitute {{var}} placeholders; unknown ones are left verbatim."""
    values = template_values(evt, tz_name, default_exchange)
    return _VAR.sub(lambda m: values.get(m.group(1), m.group(0)), template or DEFAULT_MESSAGE)


def format_toast_title(evt: TriggerEvent) -> str:
    return f"Alert on {evt.symbol}"


def format_toast_body(evt: TriggerEvent) -> str:
    return f"{evt.symbol} {condition_label(evt.condition)} {evt.price}"
