# src/chartalerts/notify/sound.py
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TextIO

import numpy as np
import structlog

log = structlog.get_logger("alarm")


@dataclass(slots=True, frozen=True)
class AlarmConfig:
    """
    Square-wave alarm: `pulses` beeps of `pulse_s` on / `pulse_s` off.
    Defaults give 10 x (150ms on + 150ms off) = 3s at ~2kHz.
    """
    frequency_hz: float = 2048.0
    pulses: int = 10
    pulse_s: float = 0.15
    sample_rate: int = 44_100
    tail_s: float = 0.1

    @property
    def duration_s(self) -> float:
        return self.pulses * 2 * self.pulse_s + self.tail_s


def alarm_waveform(cfg: AlarmConfig = AlarmConfig()) -> np.ndarray:
    """float32 PCM in [-1, 1], gated into on/off pulses."""
    n = int(round(cfg.duration_s * cfg.sample_rate))
    t = np.arange(n, dtype=np.float64) / cfg.sample_rate
    square = np.where(np.sin(2.0 * np.pi * cfg.frequency_hz * t) >= 0.0, 1.0, -1.0)
    slot = np.floor(t / cfg.pulse_s).astype(np.int64)
    gate = (slot % 2 == 0) & (slot < cfg.pulses * 2)
    return (square * gate).astype(np.float32)


class AudioContext(Protocol):
    """One playback session. close() must be safe to call more than once."""
    def play(self, samples: np.ndarray, sample_rate: int, on_ended: Callable[[], None]) -> None: ...
    def close(self) -> None: ...


AudioFactory = Callable[[], AudioContext]


class BellAudioContext:
    """
    Terminal fallback: rings the bell at the start of every pulse and
    reports the end after the full alarm duration. Needs a running loop.
    """
    def __init__(self, cfg: AlarmConfig = AlarmConfig(), stream: Optional[TextIO] = None):
        self.cfg = cfg
        self._stream = stream
        self._loop = asyncio.get_running_loop()
        self._handles: list[asyncio.TimerHandle] = []
        self.closed = False

    def play(self, samples: np.ndarray, sample_rate: int, on_ended: Callable[[], None]) -> None:
        duration = len(samples) / float(sample_rate)
        for i in range(self.cfg.pulses):
            self._handles.append(self._loop.call_later(i * 2 * self.cfg.pulse_s, self._ring))
        self._handles.append(self._loop.call_later(duration, on_ended))

    def _ring(self) -> None:
        out = self._stream or sys.stdout
        out.write("\a")
        out.flush()

    def close(self) -> None:
        for h in self._handles:
            h.cancel()
        self._handles.clear()
        self.closed = True


class AlarmPlayer:
    """
    A fresh audio context per alarm, released when playback ends (or on
    close_all). Failures are logged and never leave this channel.
    """
    def __init__(self, factory: Optional[AudioFactory] = None, cfg: AlarmConfig = AlarmConfig()):
        self.cfg = cfg
        self._factory = factory if factory is not None else (lambda: BellAudioContext(cfg))
        self._samples: Optional[np.ndarray] = None
        self._active: set[AudioContext] = set()

    @property
    def active(self) -> int:
        return len(self._active)

    def play(self) -> bool:
        ctx: Optional[AudioContext] = None
        try:
            if self._samples is None:
                self._samples = alarm_waveform(self.cfg)
            ctx = self._factory()
            self._active.add(ctx)
            ctx.play(self._samples, self.cfg.sample_rate, lambda: self._release(ctx))
            return True
        except Exception as e:
            log.warning("alarm_failed", err=str(e))
            if ctx is not None:
                self._release(ctx)
            return False

    def _release(self, ctx: AudioContext) -> None:
        if ctx not in self._active:
            return
        self._active.discard(ctx)
        try:
            ctx.close()
        except Exception as e:
            log.warning("alarm_close_failed", err=str(e))

    def close_all(self) -> None:
        for ctx in list(self._active):
            self._release(ctx)
