# src/chartalerts/engine.py
from __future__ import annotations

import asyncio
from typing import Callable, Optional

import structlog

from chartalerts.alerts import codec
from chartalerts.alerts.conditions import AlertCondition, condition_options
from chartalerts.alerts.edit import AlertEditData, apply_edit, edit_data_for
from chartalerts.alerts.evaluator import TriggerEvaluator, TriggerEvent
from chartalerts.alerts.geometry import InMemoryToolRegistry
from chartalerts.alerts.models import AlertNotificationSettings
from chartalerts.alerts.state import AlertStore
from chartalerts.config import EngineConfig
from chartalerts.notify.dispatcher import NotificationDispatcher
from chartalerts.notify.sound import AlarmPlayer, AudioFactory
from chartalerts.notify.toasts import ToastRenderer
from chartalerts.notify.webhook import WebhookClient
from chartalerts.utils.types import PriceUpdate, ToolType

log = structlog.get_logger("engine")


class AlertEngine:
    """
    Store → evaluator → dispatcher, plus persistence and the edit surface.

    Ticks are evaluated synchronously in arrival order; the only
    suspending work (webhooks) runs as tasks owned by the dispatcher.
    """
    def __init__(
        self,
        cfg: Optional[EngineConfig] = None,
        renderer: Optional[ToastRenderer] = None,
        audio_factory: Optional[AudioFactory] = None,
        on_edit_requested: Optional[Callable[[AlertEditData], None]] = None,
    ):
        self.cfg = cfg or EngineConfig()
        self.store = AlertStore(symbol=self.cfg.symbol, exchange=self.cfg.exchange)
        self.registry = InMemoryToolRegistry()
        self.dispatcher = NotificationDispatcher(
            renderer=renderer,
            alarm=AlarmPlayer(audio_factory, self.cfg.alarm),
            webhook=WebhookClient(self.cfg.webhook),
            cfg=self.cfg.toast,
            on_edit=self._edit_from_toast,
            tz_name=self.cfg.tz_name,
        )
        self.evaluator = TriggerEvaluator(self.store, self.registry, emit=self._route)
        self.on_edit_requested = on_edit_requested

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self.cfg.alerts_path:
            n = codec.load_alerts(self.cfg.alerts_path, self.store)
            log.info("alerts_loaded", path=self.cfg.alerts_path, count=n)
            self.store.alerts_changed.subscribe(lambda _: self._persist(), owner=self)
        await self.dispatcher.start()

    async def stop(self) -> None:
        try:
            await self.evaluator.stop()
        finally:
            try:
                await self.dispatcher.stop()
            finally:
                self.evaluator.detach()
                self.store.alerts_changed.unsubscribe_all(self)
                self.store.destroy()

    async def consume(self, q_prices: asyncio.Queue) -> None:
        """Start draining PriceUpdates from `q_prices` in the background, in order."""
        await self.evaluator.start(q_prices)

    # ---------- inbound ----------

    def on_price(self, update: PriceUpdate) -> list[TriggerEvent]:
        return self.evaluator.evaluate(update)

    def _route(self, evt: TriggerEvent, settings: AlertNotificationSettings) -> None:
        self.dispatcher.show(evt, settings)

    # ---------- edit surface ----------

    def condition_options(self, tool_type: Optional[ToolType] = None) -> tuple[AlertCondition, ...]:
        return condition_options(tool_type)

    def edit_data_for(self, alert_id: str) -> Optional[AlertEditData]:
        return edit_data_for(self.store, alert_id)

    def apply_edit(self, data: AlertEditData) -> bool:
        return apply_edit(self.store, data)

    def _edit_from_toast(self, evt: TriggerEvent) -> None:
        data = self.edit_data_for(evt.alert_id)
        if data is None:
            log.info("edit_requested_for_removed_alert", alert_id=evt.alert_id)
            return
        if self.on_edit_requested is not None:
            self.on_edit_requested(data)

    # ---------- persistence ----------

    def _persist(self) -> None:
        try:
            codec.save_alerts(self.cfg.alerts_path, self.store)
        except OSError as e:
            log.warning("alerts_save_failed", path=self.cfg.alerts_path, err=str(e))
