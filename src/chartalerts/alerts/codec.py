# src/chartalerts/alerts/codec.py
from __future__ import annotations

import json
import math
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional, TypedDict

import structlog

from chartalerts.alerts.conditions import AlertCondition, ALL_CONDITIONS
from chartalerts.alerts.models import (
    DEFAULT_NOTIFICATION_SETTINGS,
    Alert,
    AlertNotificationSettings,
)
from chartalerts.utils.time import utc_now_ms

if TYPE_CHECKING:
    from chartalerts.alerts.state import AlertStore

log = structlog.get_logger("codec")


class NotificationRecord(TypedDict, total=False):
    showToast: bool
    playSound: bool
    webhookEnabled: bool
    webhookUrl: str
    webhookMode: str
    openalgoAction: str
    openalgoProduct: str
    openalgoQuantity: int
    openalgoPricetype: str
    message: str


class SerializableAlert(TypedDict, total=False):
    id: str
    price: float
    condition: AlertCondition
    type: str              # always "price" on export
    createdAt: int         # epoch ms
    notifications: NotificationRecord
    symbol: str
    exchange: str
    triggered: bool        # only ever read; true -> skipped on import


# wire key -> dataclass field
_SETTINGS_KEYS = {
    "showToast": "show_toast",
    "playSound": "play_sound",
    "webhookEnabled": "webhook_enabled",
    "webhookMode": "webhook_mode",
    "webhookUrl": "webhook_url",
    "message": "message",
    "openalgoAction": "openalgo_action",
    "openalgoProduct": "openalgo_product",
    "openalgoQuantity": "openalgo_quantity",
    "openalgoPricetype": "openalgo_pricetype",
}


# ---------- notification settings ----------

def settings_to_record(s: AlertNotificationSettings) -> NotificationRecord:
    rec: dict[str, Any] = {}
    for wire, attr in _SETTINGS_KEYS.items():
        v = getattr(s, attr)
        if v is not None:
            rec[wire] = v
    return rec  # type: ignore[return-value]


def settings_from_record(rec: Any) -> Optional[AlertNotificationSettings]:
    """
    Lenient: unknown keys are ignored, missing keys take defaults and
    wrongly-typed values fall back to the default for that field.
    """
    if not isinstance(rec, dict):
        return None
    kwargs: dict[str, Any] = {}
    for wire, attr in _SETTINGS_KEYS.items():
        if wire not in rec:
            continue
        v = rec[wire]
        default = getattr(DEFAULT_NOTIFICATION_SETTINGS, attr)
        if attr == "webhook_url":
            kwargs[attr] = v if isinstance(v, str) and v else None
        elif attr == "webhook_mode":
            kwargs[attr] = v if v in ("openalgo", "custom") else default
        elif attr == "openalgo_quantity":
            try:
                kwargs[attr] = max(1, int(v))
            except (TypeError, ValueError):
                kwargs[attr] = default
        elif isinstance(default, bool):
            kwargs[attr] = v if isinstance(v, bool) else default
        else:
            kwargs[attr] = v if isinstance(v, str) and v else default
    return AlertNotificationSettings(**kwargs)


# ---------- alerts ----------

def alert_to_record(alert: Alert, created_at: Optional[int] = None) -> SerializableAlert:
    rec: SerializableAlert = {
        "id": alert.id,
        "price": float(alert.price),
        "condition": alert.condition or "crossing",
        "type": "price",
        "createdAt": created_at if created_at is not None else alert.created_at,
    }
    if alert.notifications is not None:
        rec["notifications"] = settings_to_record(alert.notifications)
    if alert.symbol is not None:
        rec["symbol"] = alert.symbol
    if alert.exchange is not None:
        rec["exchange"] = alert.exchange
    return rec


def alert_from_record(rec: Any) -> Optional[Alert]:
    """
    Returns None for anything that should not enter the store: non-dicts,
    missing/empty id, non-numeric price, unknown condition, or a record
    flagged as already triggered.
    """
    if not isinstance(rec, dict):
        return None
    rid = rec.get("id")
    if not rid or not isinstance(rid, str):
        return None
    price = rec.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price):
        return None
    if rec.get("triggered") is True:
        return None
    condition = rec.get("condition") or "crossing"
    if condition not in ALL_CONDITIONS:
        return None
    created = rec.get("createdAt")
    return Alert(
        id=rid,
        price=float(price),
        condition=condition,
        kind="price",
        notifications=settings_from_record(rec.get("notifications")),
        symbol=rec.get("symbol") if isinstance(rec.get("symbol"), str) else None,
        exchange=rec.get("exchange") if isinstance(rec.get("exchange"), str) else None,
        created_at=int(created) if isinstance(created, (int, float)) and not isinstance(created, bool) else utc_now_ms(),
    )


def export_records(alerts: Iterable[Alert]) -> list[SerializableAlert]:
    # tool alerts reference live drawings and never leave the process
    return [alert_to_record(a) for a in alerts if not a.is_tool]


def decode_records(records: Any) -> list[Alert]:
    if not isinstance(records, list):
        return []
    out: list[Alert] = []
    for rec in records:
        alert = alert_from_record(rec)
        if alert is None:
            log.warning("import_record_skipped", snippet=str(rec)[:200])
            continue
        out.append(alert)
    return out


# ---------- JSON file transport ----------

def dumps(records: list[SerializableAlert]) -> str:
    return json.dumps(records, ensure_ascii=False, separators=(",", ":"))


def loads(text: str) -> list[Any]:
    try:
        data = json.loads(text)
    except ValueError as e:
        log.warning("alerts_json_error", err=str(e))
        return []
    return data if isinstance(data, list) else []


def save_alerts(path: str | os.PathLike, store: "AlertStore") -> None:
    """Write the store's exportable alerts atomically (tmp file + replace)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(dumps(store.export_alerts()), encoding="utf-8")
    os.replace(tmp, p)


def load_alerts(path: str | os.PathLike, store: "AlertStore") -> int:
    """Import alerts from `path` into `store`. Missing or unreadable files load nothing."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        return 0
    except OSError as e:
        log.warning("alerts_file_unreadable", path=str(p), err=str(e))
        return 0
    return store.import_alerts(loads(text))
