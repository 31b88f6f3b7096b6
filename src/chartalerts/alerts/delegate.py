from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class _Listener(Generic[T]):
    callback: Callable[[T], None]
    owner: object
    singleshot: bool


class Delegate(Generic[T]):
    """
    Typed observer list. Listeners are grouped by an owner object so a
    component can drop everything it subscribed with one call.

    Listeners are snapshotted before firing; subscribing or unsubscribing
    from inside a callback affects the next fire, not the current one.
    """
    def __init__(self, name: str = ""):
        self.name = name
        self._listeners: list[_Listener[T]] = []

    def subscribe(self, callback: Callable[[T], None], owner: object = None, singleshot: bool = False) -> None:
        self._listeners.append(_Listener(callback, owner, singleshot))

    def unsubscribe(self, callback: Callable[[T], None]) -> None:
        self._listeners = [l for l in self._listeners if l.callback != callback]

    def unsubscribe_all(self, owner: object) -> None:
        self._listeners = [l for l in self._listeners if l.owner is not owner]

    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def clear(self) -> None:
        self._listeners.clear()

    def fire(self, payload: Optional[T] = None) -> None:
        snapshot = list(self._listeners)
        self._listeners = [l for l in self._listeners if not l.singleshot]
        for l in snapshot:
            l.callback(payload)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._listeners)
