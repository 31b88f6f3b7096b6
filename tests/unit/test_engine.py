import asyncio
import json

import pytest

from chartalerts.alerts.geometry import ZoneGeometry
from chartalerts.alerts.models import AlertNotificationSettings
from chartalerts.config import EngineConfig
from chartalerts.engine import AlertEngine
from chartalerts.notify.dispatcher import ToastConfig
from chartalerts.utils.types import PriceUpdate
from tests.helpers.fakes import FakeAudioContext, FakeWebhookClient, RecordingRenderer, make_event

T0 = 1_700_000_000.0


def _engine(tmp_path=None, **kw):
    cfg = EngineConfig(
        symbol="NIFTY",
        exchange="NSE",
        alerts_path=str(tmp_path / "alerts.json") if tmp_path else None,
        tz_name="UTC",
        toast=ToastConfig(auto_dismiss_s=10, dismiss_animation_s=0.01),
    )
    FakeAudioContext.instances = []
    renderer = RecordingRenderer()
    engine = AlertEngine(cfg, renderer=renderer, audio_factory=FakeAudioContext, **kw)
    engine.dispatcher.webhook = FakeWebhookClient()
    return engine, renderer


@pytest.mark.asyncio
async def test_tick_to_toast_sound_and_webhook():
    engine, renderer = _engine()
    await engine.start()
    aid = engine.store.add_alert_with_condition(100.0, "crossing_up")
    engine.store.update_alert(aid, 100.0, "crossing_up",
                              AlertNotificationSettings(webhook_enabled=True))
    engine.on_price(PriceUpdate("NIFTY", 99.0, T0))
    fired = engine.on_price(PriceUpdate("NIFTY", 101.0, T0 + 1))
    assert [e.alert_id for e in fired] == [aid]
    await asyncio.sleep(0.01)

    bodies = [t.body for t in renderer.mounted.values()]
    assert "NIFTY Crossing Up 100.00" in bodies
    assert "✓ Webhook sent (HTTP 200)" in bodies
    assert len(FakeAudioContext.instances) == 1
    assert len(engine.dispatcher.webhook.sent) == 1

    await engine.stop()
    assert renderer.mounted == {}
    assert engine.dispatcher.pending_timers() == 0
    assert engine.dispatcher.open_handles() == 0


@pytest.mark.asyncio
async def test_queue_consumption_and_zone_tools():
    engine, renderer = _engine()
    await engine.start()
    engine.registry.put("box", ZoneGeometry(low=100.0, high=110.0))
    aid = engine.store.add_tool_alert("box", "entering", price=105.0, tool_type="shape")
    q = asyncio.Queue()
    await engine.consume(q)
    for i, p in enumerate([95.0, 105.0, 106.0]):
        q.put_nowait(PriceUpdate("NIFTY", p, T0 + i))
    await asyncio.sleep(0.02)
    assert engine.dispatcher.live_alert_ids() == [aid]
    assert len(renderer.history) == 1
    await engine.stop()


@pytest.mark.asyncio
async def test_alerts_persist_across_restarts(tmp_path):
    engine, _ = _engine(tmp_path)
    await engine.start()
    a = engine.store.add_alert(22000.0)
    engine.store.add_tool_alert("tl-1", "crossing", price=21900.0)
    await engine.stop()

    on_disk = json.loads((tmp_path / "alerts.json").read_text(encoding="utf-8"))
    assert [r["id"] for r in on_disk] == [a]

    again, _ = _engine(tmp_path)
    await again.start()
    assert [x.id for x in again.store.alerts()] == [a]
    again.store.remove_alert(a)
    assert json.loads((tmp_path / "alerts.json").read_text(encoding="utf-8")) == []
    await again.stop()


@pytest.mark.asyncio
async def test_edit_from_toast_reaches_callback():
    opened = []
    engine, _ = _engine(on_edit_requested=opened.append)
    await engine.start()
    aid = engine.store.add_alert(100.0)
    engine.on_price(PriceUpdate("NIFTY", 99.0, T0))
    engine.on_price(PriceUpdate("NIFTY", 101.0, T0 + 1))
    engine.dispatcher.request_edit(aid)
    assert [d.alert_id for d in opened] == [aid]
    assert opened[0].options() == engine.condition_options()

    data = opened[0]
    data.condition = "crossing_down"
    assert engine.apply_edit(data)
    assert engine.store.get(aid).condition == "crossing_down"

    engine.store.remove_alert(aid)
    engine.dispatcher.request_edit(aid)
    assert len(opened) == 1
    await engine.stop()



@pytest.mark.asyncio
async def test_stop_tears_down_even_when_dispatch_keeps_failing():
    engine, renderer = _engine()
    await engine.start()
    aid = engine.store.add_alert(100.0)
    engine.dispatcher.show(make_event(alert_id=aid), None)
    assert len(renderer.mounted) == 1

    def broken_show(evt, settings):
        raise RuntimeError("dispatch failed")

    engine.dispatcher.show = broken_show
    q = asyncio.Queue()
    await engine.consume(q)
    for i, p in enumerate([95.0, 105.0, 95.0]):
        q.put_nowait(PriceUpdate("NIFTY", p, T0 + i))
    await asyncio.sleep(0.02)
    assert q.empty()
    assert engine.evaluator.state_of(aid).last_position == "below"

    await engine.stop()
    assert renderer.mounted == {}
    assert engine.dispatcher.open_handles() == 0
    assert engine.dispatcher.webhook.stopped


@pytest.mark.asyncio
async def test_stop_reaches_dispatcher_when_evaluator_stop_fails(monkeypatch):
    engine, renderer = _engine()
    await engine.start()
    engine.dispatcher.show(make_event(alert_id="a1"), None)

    async def broken_stop():
        raise RuntimeError("evaluator stuck")

    monkeypatch.setattr(engine.evaluator, "stop", broken_stop)
    with pytest.raises(RuntimeError):
        await engine.stop()
    assert renderer.mounted == {}
    assert engine.dispatcher.pending_timers() == 0
    assert engine.dispatcher.webhook.stopped
