# src/chartalerts/notify/dispatcher.py
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from chartalerts.alerts.evaluator import TriggerEvent
from chartalerts.alerts.formatting import format_toast_body, format_toast_title
from chartalerts.alerts.models import DEFAULT_NOTIFICATION_SETTINGS, AlertNotificationSettings
from chartalerts.notify.sound import AlarmPlayer
from chartalerts.notify.toasts import ConsoleToastRenderer, Toast, ToastRenderer
from chartalerts.notify.webhook import WebhookClient, WebhookResult
from chartalerts.utils.time import clock_hms

log = structlog.get_logger("dispatcher")


@dataclass(slots=True)
class ToastConfig:
    auto_dismiss_s: float = 60.0
    dismiss_animation_s: float = 0.3


class NotificationDispatcher:
    """
    Fans a trigger out to the toast, sound and webhook channels.

    Resource tables (every entry is released by exactly one of
    dismiss / close_result / the removal timer / destroy):
      _live           alert_id -> alert toast on screen
      _auto           alert_id -> its auto-dismiss timer
      _results        token    -> webhook result toast on screen
      _result_timers  token    -> its auto-dismiss timer
      _leaving        token    -> (toast, removal timer) while animating out
      _tasks          in-flight webhook deliveries

    Timers use the running asyncio loop; show() must be called from it.
    """
    def __init__(
        self,
        renderer: Optional[ToastRenderer] = None,
        alarm: Optional[AlarmPlayer] = None,
        webhook: Optional[WebhookClient] = None,
        cfg: Optional[ToastConfig] = None,
        on_edit: Optional[Callable[[TriggerEvent], None]] = None,
        tz_name: Optional[str] = None,
    ):
        self.renderer = renderer or ConsoleToastRenderer()
        self.alarm = alarm or AlarmPlayer()
        self.webhook = webhook or WebhookClient()
        self.cfg = cfg or ToastConfig()
        self.on_edit = on_edit
        self.tz_name = tz_name

        self._tokens = itertools.count(1)
        self._live: dict[str, Toast] = {}
        self._auto: dict[str, asyncio.TimerHandle] = {}
        self._results: dict[int, Toast] = {}
        self._result_timers: dict[int, asyncio.TimerHandle] = {}
        self._leaving: dict[int, tuple[Toast, asyncio.TimerHandle]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._destroyed = False

    # ---------- lifecycle ----------

    async def start(self) -> None:
        await self.webhook.start()

    async def stop(self) -> None:
        """destroy() plus waiting out cancelled deliveries and closing the HTTP session."""
        tasks = list(self._tasks)
        self.destroy()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.webhook.stop()

    def destroy(self) -> None:
        """Cancel every timer and delivery, remove every toast. Safe to call repeatedly."""
        if self._destroyed:
            return
        self._destroyed = True
        for h in itertools.chain(self._auto.values(), self._result_timers.values()):
            h.cancel()
        self._auto.clear()
        self._result_timers.clear()
        for toast, h in list(self._leaving.values()):
            h.cancel()
            self._unmount(toast)
        self._leaving.clear()
        for toast in itertools.chain(list(self._live.values()), list(self._results.values())):
            self._unmount(toast)
        self._live.clear()
        self._results.clear()
        for t in self._tasks:
            t.cancel()
        self._tasks.clear()
        self.alarm.close_all()
        log.info("dispatcher_destroyed")

    # ---------- inbound ----------

    def show(self, evt: TriggerEvent, settings: Optional[AlertNotificationSettings] = None) -> None:
        if self._destroyed:
            log.debug("show_after_destroy", alert_id=evt.alert_id)
            return
        s = settings or DEFAULT_NOTIFICATION_SETTINGS

        if s.show_toast:
            try:
                self._show_alert_toast(evt)
            except Exception as e:
                log.warning("toast_failed", alert_id=evt.alert_id, err=str(e) or type(e).__name__)
        if s.play_sound:
            self.alarm.play()
        if s.webhook_enabled:
            task = asyncio.get_running_loop().create_task(
                self._deliver(evt, s), name=f"webhook-{evt.alert_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def request_edit(self, alert_id: str) -> None:
        toast = self._live.get(alert_id)
        if toast is not None and toast.event is not None and self.on_edit is not None:
            self.on_edit(toast.event)

    # ---------- alert toasts ----------

    def _show_alert_toast(self, evt: TriggerEvent) -> None:
        if evt.alert_id in self._live:
            self.dismiss(evt.alert_id)
        toast = Toast(
            token=next(self._tokens),
            key=evt.alert_id,
            style="alert",
            title=format_toast_title(evt),
            body=format_toast_body(evt),
            clock=clock_hms(evt.timestamp, self.tz_name),
            event=evt,
        )
        self.renderer.mount(toast)
        self._live[evt.alert_id] = toast
        self._auto[evt.alert_id] = asyncio.get_running_loop().call_later(
            self.cfg.auto_dismiss_s, self._auto_dismiss, evt.alert_id
        )

    def _auto_dismiss(self, alert_id: str) -> None:
        self._auto.pop(alert_id, None)
        self.dismiss(alert_id)

    def dismiss(self, alert_id: str) -> None:
        """Manual or automatic close. Missing or already-closing ids are ignored."""
        h = self._auto.pop(alert_id, None)
        if h is not None:
            h.cancel()
        toast = self._live.pop(alert_id, None)
        if toast is not None:
            self._begin_leave(toast)

    # ---------- webhook + result toasts ----------

    async def _deliver(self, evt: TriggerEvent, s: AlertNotificationSettings) -> None:
        try:
            result = await self.webhook.send(evt, s)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = WebhookResult(False, str(e) or type(e).__name__)
        if result.success:
            log.info("webhook_sent", alert_id=evt.alert_id, mode=s.webhook_mode, msg=result.message)
        else:
            log.warning("webhook_failed", alert_id=evt.alert_id, mode=s.webhook_mode, msg=result.message)
        if not self._destroyed:
            try:
                self._show_result(result)
            except Exception as e:
                log.warning("result_toast_failed", alert_id=evt.alert_id, err=str(e) or type(e).__name__)

    def _show_result(self, result: WebhookResult) -> int:
        token = next(self._tokens)
        toast = Toast(
            token=token,
            key=f"webhook:{token}",
            style="success" if result.success else "failure",
            title="",
            body=("✓ " if result.success else "✗ ") + result.message,
        )
        self.renderer.mount(toast)
        self._results[token] = toast
        self._result_timers[token] = asyncio.get_running_loop().call_later(
            self.cfg.auto_dismiss_s, self._auto_close_result, token
        )
        return token

    def _auto_close_result(self, token: int) -> None:
        self._result_timers.pop(token, None)
        self.close_result(token)

    def close_result(self, token: int) -> None:
        h = self._result_timers.pop(token, None)
        if h is not None:
            h.cancel()
        toast = self._results.pop(token, None)
        if toast is not None:
            self._begin_leave(toast)

    # ---------- removal ----------

    def _begin_leave(self, toast: Toast) -> None:
        toast.dismissing = True
        self.renderer.begin_dismiss(toast)
        h = asyncio.get_running_loop().call_later(self.cfg.dismiss_animation_s, self._finish_leave, toast.token)
        self._leaving[toast.token] = (toast, h)

    def _finish_leave(self, token: int) -> None:
        entry = self._leaving.pop(token, None)
        if entry is not None:
            self._unmount(entry[0])

    def _unmount(self, toast: Toast) -> None:
        try:
            self.renderer.unmount(toast)
        except Exception as e:
            log.warning("toast_unmount_failed", key=toast.key, err=str(e))

    # ---------- introspection ----------

    def live_alert_ids(self) -> list[str]:
        return list(self._live)

    def result_tokens(self) -> list[int]:
        return list(self._results)

    def pending_timers(self) -> int:
        return len(self._auto) + len(self._result_timers) + len(self._leaving)

    def open_handles(self) -> int:
        """Toasts still mounted (live, results, or animating out) plus running audio contexts."""
        return len(self._live) + len(self._results) + len(self._leaving) + self.alarm.active
