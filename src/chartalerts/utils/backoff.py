from __future__ import annotations

import random


def next_backoff(prev: float, cap: float) -> float:
    """Exponential backoff progression with cap (no jitter)."""
    return min(prev * 2.0, cap)


def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())


class Backoff:
    """
    Reconnect delay for the price feed: doubles per failed attempt up to
    `cap`, jittered, and drops back to `initial` once a session is healthy.
    """
    def __init__(self, initial: float = 0.25, cap: float = 30.0, ratio: float = 0.2):
        self.initial = initial
        self.cap = cap
        self.ratio = ratio
        self.current = initial

    def next_delay(self) -> float:
        delay = jitter(self.current, ratio=self.ratio)
        self.current = next_backoff(self.current, self.cap)
        return delay

    def reset(self) -> None:
        self.current = self.initial
