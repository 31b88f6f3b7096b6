# src/chartalerts/notify/toasts.py
from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal, Optional, Protocol, TextIO

import structlog

from chartalerts.alerts.evaluator import TriggerEvent

log = structlog.get_logger("toasts")

ToastStyle = Literal["alert", "success", "failure"]


@dataclass(slots=True)
class Toast:
    token: int                  # unique per mounted toast
    key: str                    # alert id, or "webhook:<token>" for result toasts
    style: ToastStyle
    title: str
    body: str
    clock: str = ""
    event: Optional[TriggerEvent] = None   # lets the surface offer "Edit alert"
    dismissing: bool = False


class ToastRenderer(Protocol):
    """The visual surface. mount/unmount are paired exactly once per toast."""
    def mount(self, toast: Toast) -> None: ...
    def begin_dismiss(self, toast: Toast) -> None: ...
    def unmount(self, toast: Toast) -> None: ...


class ConsoleToastRenderer:
    """Prints toasts to a terminal stream; dismissal is silent."""
    _MARKS = {"alert": "[ALERT]", "success": "[WEBHOOK]", "failure": "[WEBHOOK]"}

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    def mount(self, toast: Toast) -> None:
        mark = self._MARKS.get(toast.style, "")
        parts = [mark, toast.title, "|", toast.body] if toast.title else [mark, toast.body]
        if toast.clock:
            parts.append(f"@ {toast.clock}")
        print(" ".join(parts), file=self._stream or sys.stdout, flush=True)

    def begin_dismiss(self, toast: Toast) -> None:
        pass

    def unmount(self, toast: Toast) -> None:
        log.debug("toast_removed", key=toast.key, token=toast.token)
