import pytest

from chartalerts.alerts.models import AlertNotificationSettings
from chartalerts.alerts.state import AlertStore


def _recorder(store):
    events = []
    store.alert_added.subscribe(lambda a: events.append(("added", a.id)))
    store.alert_removed.subscribe(lambda i: events.append(("removed", i)))
    store.alert_changed.subscribe(lambda a: events.append(("changed", a.id)))
    store.alerts_changed.subscribe(lambda _: events.append(("all",)))
    return events


def test_add_alert_defaults_to_crossing_and_fires_events():
    store = AlertStore(symbol="NIFTY", exchange="NSE")
    events = _recorder(store)
    aid = store.add_alert(22000.0)
    alert = store.get(aid)
    assert alert.condition == "crossing"
    assert alert.kind == "price"
    assert alert.symbol == "NIFTY" and alert.exchange == "NSE"
    assert events == [("added", aid), ("all",)]


def test_add_with_market_price_captures_initial_position():
    store = AlertStore()
    above = store.add_alert_with_condition(100.0, "crossing_down", market_price=105.0)
    below = store.add_alert_with_condition(100.0, "crossing_up", market_price=95.0)
    unset = store.add_alert(100.0)
    assert store.get(above).initial_price_position == "above"
    assert store.get(below).initial_price_position == "below"
    assert store.get(unset).initial_price_position is None


def test_invalid_condition_and_price_rejected():
    store = AlertStore()
    with pytest.raises(ValueError):
        store.add_alert_with_condition(1.0, "sideways")
    with pytest.raises(ValueError):
        store.add_alert(float("nan"))
    assert len(store) == 0


def test_alerts_sorted_by_price_descending():
    store = AlertStore()
    store.add_alert(10.0)
    store.add_alert(30.0)
    mid = store.add_alert(20.0)
    assert [a.price for a in store.alerts()] == [30.0, 20.0, 10.0]
    store.update_alert_price(mid, 40.0)
    assert [a.price for a in store.alerts()] == [40.0, 30.0, 10.0]


def test_id_generation_retries_on_collision():
    ids = iter(["aa", "aa", "aa", "bb"])
    store = AlertStore(id_factory=lambda: next(ids))
    first = store.add_alert(1.0)
    second = store.add_alert(2.0)
    assert (first, second) == ("aa", "bb")


def test_remove_and_unknown_ids_are_noops():
    store = AlertStore()
    aid = store.add_alert(1.0)
    events = _recorder(store)
    store.remove_alert("missing")
    store.update_alert_price("missing", 2.0)
    store.update_alert("missing", 2.0, "crossing")
    assert events == []
    store.remove_alert(aid)
    assert events == [("removed", aid), ("all",)]
    assert store.alerts() == []


def test_update_alert_replaces_condition_and_notifications():
    store = AlertStore()
    aid = store.add_alert_with_condition(50.0, "crossing", market_price=40.0)
    events = _recorder(store)
    ns = AlertNotificationSettings(play_sound=False)
    store.update_alert(aid, 55.0, "crossing_up", ns)
    a = store.get(aid)
    assert (a.price, a.condition, a.notifications) == (55.0, "crossing_up", ns)
    # an edit re-arms the creation-tick capture
    assert a.initial_price_position is None
    assert events == [("changed", aid), ("all",)]
    # notifications omitted -> previous kept
    store.update_alert(aid, 56.0, "crossing_down")
    assert store.get(aid).notifications == ns


def test_tool_alert_condition_must_fit_tool_type():
    store = AlertStore()
    tid = store.add_tool_alert("rect-1", "inside", price=10.0, tool_type="shape")
    assert store.get(tid).kind == "tool" and store.get(tid).tool_id == "rect-1"
    with pytest.raises(ValueError):
        store.add_tool_alert("vline-1", "crossing_up", price=0.0, tool_type="vertical")
    with pytest.raises(ValueError):
        store.add_tool_alert("line-1", "entering", price=10.0, tool_type="line")


def test_export_excludes_tool_alerts():
    store = AlertStore(symbol="BANKNIFTY")
    pid = store.add_alert(48000.0)
    store.add_tool_alert("tl-1", "crossing", price=47900.0)
    records = store.export_alerts()
    assert [r["id"] for r in records] == [pid]
    assert records[0]["type"] == "price"
    assert isinstance(records[0]["createdAt"], int)


def test_export_import_round_trip():
    src = AlertStore(symbol="NIFTY", exchange="NSE")
    ns = AlertNotificationSettings(
        webhook_enabled=True, webhook_mode="custom",
        webhook_url="https://hooks.example.test/x", message="{{symbol}} hit {{price}}",
    )
    a = src.add_alert_with_condition(22000.0, "crossing_up")
    src.update_alert(a, 22000.0, "crossing_up", ns)
    b = src.add_alert_with_condition(21500.0, "crossing_down")
    src.add_tool_alert("tl-1", "crossing", price=21900.0)

    dst = AlertStore()
    assert dst.import_alerts(src.export_alerts()) == 2
    got = {x.id: x for x in dst.alerts()}
    assert set(got) == {a, b}
    assert got[a].price == 22000.0 and got[a].condition == "crossing_up"
    assert got[a].notifications == ns
    assert got[b].notifications is None
    assert got[a].symbol == "NIFTY" and got[a].exchange == "NSE"
    assert all(x.kind == "price" for x in got.values())


def test_import_skips_triggered_and_malformed_records():
    store = AlertStore()
    events = _recorder(store)
    n = store.import_alerts([
        {"id": "ok", "price": 10, "condition": "crossing", "type": "price", "createdAt": 1},
        {"id": "done", "price": 11, "condition": "crossing", "triggered": True},
        {"price": 12},
        {"id": "", "price": 13},
        {"id": "str", "price": "14"},
        {"id": "bool", "price": True},
        {"id": "weird", "price": 15, "condition": "sideways"},
        "not-a-dict",
        {"id": "nocond", "price": 16},
    ])
    assert n == 2
    assert {a.id for a in store.alerts()} == {"ok", "nocond"}
    assert store.get("nocond").condition == "crossing"
    # import announces once, without per-alert added events
    assert events == [("all",)]


def test_import_non_list_is_ignored():
    store = AlertStore()
    assert store.import_alerts({"id": "x", "price": 1}) == 0
    assert len(store) == 0


def test_clear_alerts_fires_aggregate_only():
    store = AlertStore()
    store.add_alert(1.0)
    store.add_alert(2.0)
    events = _recorder(store)
    store.clear_alerts()
    assert events == [("all",)]
    assert store.alerts() == []
    store.clear_alerts()
    assert events == [("all",)]


def test_mark_price_position_is_silent():
    store = AlertStore()
    aid = store.add_alert(1.0)
    events = _recorder(store)
    store.mark_price_position(aid, "unknown")
    assert store.get(aid).initial_price_position == "unknown"
    assert events == []


def test_destroy_drops_every_listener():
    store = AlertStore()
    events = _recorder(store)
    store.destroy()
    store.add_alert(1.0)
    assert events == []


def test_import_over_existing_id_announces_the_change():
    store = AlertStore()
    store.import_alerts([{"id": "a1", "price": 100.0}])
    events = _recorder(store)
    assert store.import_alerts([{"id": "a1", "price": 90.0}, {"id": "b2", "price": 80.0}]) == 2
    assert events == [("changed", "a1"), ("all",)]
    assert store.get("a1").price == 90.0
    assert [a.id for a in store.alerts()] == ["a1", "b2"]
