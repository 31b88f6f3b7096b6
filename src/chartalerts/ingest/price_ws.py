from __future__ import annotations

import asyncio
import json

import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from chartalerts.config import FeedConfig
from chartalerts.ingest import parser
from chartalerts.utils.backoff import Backoff
from chartalerts.utils.time import utc_now_s
from chartalerts.utils.types import PriceUpdate


class PriceFeedWS:
    """
    WebSocket price feed.

    Lifecycle:
      - Connect → Subscribe → Stream
      - On any error, close and reconnect with jittered backoff (cap)
      - Parses inbound JSON (single message or array) and enqueues
        PriceUpdate objects in arrival order.

    Usage:
        feed = PriceFeedWS(FeedConfig(stream_url=..., symbols=["NIFTY"]), q_prices)
        await feed.start()   # runs until cancelled/stop() called
    """
    def __init__(self, cfg: FeedConfig, prices_queue: asyncio.Queue):
        self.cfg = cfg
        self.q_prices = prices_queue
        self._log = structlog.get_logger("price_ws")
        self._stop = asyncio.Event()
        self._ws = None
        self._last_msg_ts: float = 0.0
        self._backoff = Backoff(cfg.initial_backoff_s, cfg.max_backoff_s)
        self.connected: bool = False

    # ---------------------------- public API ---------------------------- #

    async def start(self) -> None:
        while not self._stop.is_set():
            try:
                await self._connect_and_stream()
            except asyncio.CancelledError:
                # cooperative shutdown (stop() closes the socket mid-recv)
                break
            except Exception as e:
                if self._stop.is_set():
                    break
                self._log.warning("ws_error_reconnect", err=str(e), backoff_s=round(self._backoff.current, 3))
            else:
                if self._stop.is_set():
                    break
                self._log.info("ws_stream_ended", backoff_s=round(self._backoff.current, 3))
            await asyncio.sleep(self._backoff.next_delay())
        self._log.info("ws_loop_exit")

    async def stop(self) -> None:
        self._stop.set()
        if self._ws and hasattr(self._ws, "close"):
            try:
                await self._ws.close()
            except Exception as e:
                self._log.debug("ws_close_error", err=str(e))

    def last_message_age_s(self) -> float:
        return max(0.0, utc_now_s() - self._last_msg_ts) if self._last_msg_ts else float("inf")

    # --------------------------- core internals ------------------------- #

    async def _connect_and_stream(self) -> None:
        self.connected = False
        self._log.info("ws_connecting", url=self.cfg.stream_url)
        async with ws_connect(
            self.cfg.stream_url,
            open_timeout=self.cfg.open_timeout_s,
            ping_interval=self.cfg.ping_interval_s,
        ) as ws:
            self._ws = ws
            self.connected = True
            self._backoff.reset()
            self._log.info("ws_connected")
            if self.cfg.symbols:
                await ws.send(json.dumps({"action": "subscribe", "symbols": self.cfg.symbols}))
                self._log.info("ws_subscribed", symbols=self.cfg.symbols)
            try:
                await self._stream_loop(ws)
            finally:
                self.connected = False
                self._ws = None

    async def _stream_loop(self, ws) -> None:
        while not self._stop.is_set():
            try:
                raw = await ws.recv()
            except ConnectionClosed as e:
                if self._stop.is_set():
                    return
                self._log.warning("ws_closed", code=getattr(e, "code", None), reason=str(e))
                raise

            self._last_msg_ts = utc_now_s()
            try:
                msg = json.loads(raw)
            except ValueError as e:
                self._log.warning("ws_json_error", err=str(e))
                continue

            for m in (msg if isinstance(msg, list) else [msg]):
                if not isinstance(m, dict):
                    continue
                try:
                    update = parser.parse_price_msg(m)
                except (TypeError, ValueError) as e:
                    self._log.warning("parse_price_error", err=str(e), snippet=str(m)[:200])
                    continue
                if update is not None:
                    self._enqueue(update)

    def _enqueue(self, u: PriceUpdate) -> None:
        try:
            self.q_prices.put_nowait(u)
        except asyncio.QueueFull:
            self._log.info("prices_queue_full_drop", symbol=u.symbol)
