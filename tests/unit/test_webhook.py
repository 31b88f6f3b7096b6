import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from chartalerts.alerts.models import AlertNotificationSettings
from chartalerts.notify.webhook import (
    WebhookClient,
    WebhookConfig,
    build_custom_body,
    build_openalgo_payload,
    trigger_context,
)
from tests.helpers.fakes import make_event


def test_openalgo_payload():
    evt = make_event(symbol="SBIN", exchange=None, price=612.5)
    s = AlertNotificationSettings(openalgo_action="SELL", openalgo_product="CNC",
                                  openalgo_quantity=25, openalgo_pricetype="LIMIT")
    assert build_openalgo_payload(evt, s, default_exchange="BSE") == {
        "symbol": "SBIN",
        "exchange": "BSE",
        "action": "SELL",
        "product": "CNC",
        "quantity": 25,
        "pricetype": "LIMIT",
        "trigger_price": 612.5,
    }


def test_custom_body_renders_template():
    evt = make_event(symbol="NIFTY", direction="down", price=22000.0)
    s = AlertNotificationSettings(message="{{symbol}} went {{direction}} through {{price}} on {{exchange}}")
    assert build_custom_body(evt, s) == "NIFTY went down through 22000.00 on NSE"


class _Hook:
    """Tiny HTTP endpoint that records requests and answers with a scripted response."""
    def __init__(self, status=200, body="", content_type="text/plain"):
        self.status = status
        self.body = body
        self.content_type = content_type
        self.requests = []

    async def handle(self, request):
        self.requests.append((request.content_type, await request.text()))
        return web.Response(status=self.status, text=self.body, content_type=self.content_type)


async def _serve(hook):
    app = web.Application()
    app.router.add_post("/hook", hook.handle)
    server = TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_custom_webhook_posts_plain_text():
    hook = _Hook()
    server = await _serve(hook)
    client = WebhookClient(WebhookConfig(timeout_s=2))
    try:
        s = AlertNotificationSettings(webhook_enabled=True, webhook_mode="custom",
                                      webhook_url=str(server.make_url("/hook")),
                                      message="{{symbol}} {{condition}}")
        res = await client.send(make_event(symbol="NIFTY", condition="crossing_up"), s)
    finally:
        await client.stop()
        await server.close()
    assert res.success and res.status == 200
    assert res.message == "Webhook sent (HTTP 200)"
    assert hook.requests == [("text/plain", "NIFTY crossing_up")]


@pytest.mark.asyncio
async def test_openalgo_order_placed():
    hook = _Hook(body=json.dumps({"status": "success", "orderid": "250101000123"}),
                 content_type="application/json")
    server = await _serve(hook)
    client = WebhookClient(WebhookConfig(timeout_s=2, openalgo_url=str(server.make_url("/hook"))))
    try:
        res = await client.send(make_event(price=101.25), AlertNotificationSettings(webhook_enabled=True))
    finally:
        await client.stop()
        await server.close()
    assert res.success
    assert res.message == "Order placed: 250101000123"
    ctype, body = hook.requests[0]
    assert ctype == "application/json"
    assert json.loads(body)["trigger_price"] == 101.25


@pytest.mark.asyncio
async def test_openalgo_error_reply_is_failure():
    hook = _Hook(body=json.dumps({"status": "error", "message": "Invalid symbol"}),
                 content_type="application/json")
    server = await _serve(hook)
    client = WebhookClient(WebhookConfig(timeout_s=2))
    try:
        s = AlertNotificationSettings(webhook_enabled=True, webhook_url=str(server.make_url("/hook")))
        res = await client.send(make_event(), s)
    finally:
        await client.stop()
        await server.close()
    assert not res.success
    assert res.message == "Invalid symbol"


@pytest.mark.asyncio
async def test_non_2xx_is_failure_with_status():
    hook = _Hook(status=502, body="bad gateway")
    server = await _serve(hook)
    client = WebhookClient(WebhookConfig(timeout_s=2))
    try:
        s = AlertNotificationSettings(webhook_enabled=True, webhook_mode="custom",
                                      webhook_url=str(server.make_url("/hook")))
        res = await client.send(make_event(), s)
    finally:
        await client.stop()
        await server.close()
    assert not res.success
    assert res.status == 502
    assert res.message == "HTTP 502: bad gateway"


@pytest.mark.asyncio
async def test_unreachable_endpoint_is_failure():
    hook = _Hook()
    server = await _serve(hook)
    url = str(server.make_url("/hook"))
    await server.close()
    client = WebhookClient(WebhookConfig(timeout_s=2))
    try:
        s = AlertNotificationSettings(webhook_enabled=True, webhook_mode="custom", webhook_url=url)
        res = await client.send(make_event(), s)
    finally:
        await client.stop()
    assert not res.success
    assert res.status is None
    assert res.message


@pytest.mark.asyncio
async def test_custom_mode_without_url():
    client = WebhookClient()
    res = await client.send(make_event(), AlertNotificationSettings(webhook_enabled=True, webhook_mode="custom"))
    await client.stop()
    assert not res.success
    assert res.message == "Webhook URL not configured"


def test_trigger_context_uses_event_numbers():
    evt = make_event(price=22000.0, close=22001.5, exchange=None)
    assert trigger_context(evt, default_exchange="BSE") == {
        "symbol": "NIFTY",
        "exchange": "BSE",
        "price": 22000.0,
        "direction": "up",
        "condition": "crossing",
        "close": 22001.5,
    }
