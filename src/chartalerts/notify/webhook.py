from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
import structlog

from chartalerts.alerts.evaluator import TriggerEvent
from chartalerts.alerts.formatting import render_message
from chartalerts.alerts.models import AlertNotificationSettings

log = structlog.get_logger("webhook")

# --------- config & payloads ----------

@dataclass(slots=True)
class WebhookConfig:
    timeout_s: float = 8.0
    openalgo_url: str = "http://127.0.0.1:5000/api/v1/placeorder"
    default_exchange: str = "NSE"
    tz_name: Optional[str] = None       # for {{time}}


@dataclass(slots=True, frozen=True)
class WebhookResult:
    success: bool
    message: str
    status: Optional[int] = None


def trigger_context(evt: TriggerEvent, default_exchange: str = "NSE") -> dict[str, Any]:
    """The fields every webhook mode starts from."""
    return {
        "symbol": evt.symbol,
        "exchange": evt.exchange or default_exchange,
        "price": evt.numeric_price,
        "direction": evt.direction,
        "condition": evt.condition,
        "close": evt.close_price,
    }


def build_openalgo_payload(evt: TriggerEvent, s: AlertNotificationSettings,
                           default_exchange: str = "NSE") -> dict[str, Any]:
    ctx = trigger_context(evt, default_exchange)
    return {
        "symbol": ctx["symbol"],
        "exchange": ctx["exchange"],
        "action": s.openalgo_action or "BUY",
        "product": s.openalgo_product or "MIS",
        "quantity": int(s.openalgo_quantity or 1),
        "pricetype": s.openalgo_pricetype or "MARKET",
        "trigger_price": ctx["price"],
    }


def build_custom_body(evt: TriggerEvent, s: AlertNotificationSettings,
                      tz_name: Optional[str] = None, default_exchange: str = "NSE") -> str:
    return render_message(s.message, evt, tz_name, default_exchange)


# --------- client ----------

class WebhookClient:
    """
    Delivers one webhook per trigger, single attempt, no retry. Every
    outcome (HTTP error, network error, timeout, missing URL) comes back as
    a WebhookResult; nothing is raised to the caller.
    """
    def __init__(self, cfg: Optional[WebhookConfig] = None):
        self.cfg = cfg or WebhookConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def send(self, evt: TriggerEvent, s: AlertNotificationSettings) -> WebhookResult:
        mode = s.webhook_mode or "openalgo"
        if mode == "custom":
            if not s.webhook_url:
                return WebhookResult(False, "Webhook URL not configured")
            body = build_custom_body(evt, s, self.cfg.tz_name, self.cfg.default_exchange)
            return await self._post(s.webhook_url, data=body.encode("utf-8"),
                                    headers={"Content-Type": "text/plain; charset=utf-8"})
        url = s.webhook_url or self.cfg.openalgo_url
        payload = build_openalgo_payload(evt, s, self.cfg.default_exchange)
        return await self._post(url, json=payload)

    async def _post(self, url: str, **kwargs: Any) -> WebhookResult:
        await self.start()
        assert self._session is not None
        try:
            async with self._session.post(url, **kwargs) as resp:
                detail = await _maybe_text(resp)
                if 200 <= resp.status < 300:
                    return _success_result(resp.status, detail)
                log.warning("webhook_send_failed", url=url, status=resp.status, body=detail[:200])
                return WebhookResult(False, f"HTTP {resp.status}: {detail[:200]}".rstrip(": "), resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = str(e) or type(e).__name__
            log.warning("webhook_network_error", url=url, err=msg)
            return WebhookResult(False, msg)


def _success_result(status: int, detail: str) -> WebhookResult:
    # OpenAlgo answers {"status": "success", "orderid": ...} or {"status": "error", "message": ...}
    try:
        data = json.loads(detail) if detail else None
    except ValueError:
        data = None
    if isinstance(data, dict):
        if data.get("status") == "error":
            return WebhookResult(False, str(data.get("message") or "order rejected"), status)
        if data.get("orderid"):
            return WebhookResult(True, f"Order placed: {data['orderid']}", status)
    return WebhookResult(True, f"Webhook sent (HTTP {status})", status)


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return ""
