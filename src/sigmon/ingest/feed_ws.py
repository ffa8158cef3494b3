from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from sigmon.ingest import parser  # exposes parse_price_msg(dict)->Tick|None
from sigmon.utils.backoff import ReconnectBackoff
from sigmon.utils.time import utc_now_s
from sigmon.utils.types import Tick


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass(slots=True)
class FeedConfig:
    ws_url: str
    api_key: str
    symbols: list[str]
    # reconnect behavior (geometric, capped, no jitter)
    reconnect_base_s: float = 3.0
    reconnect_factor: float = 1.5
    reconnect_max_s: float = 60.0
    max_reconnect_attempts: int = 10
    # liveness
    heartbeat_interval_s: float = 10.0   # client -> server keepalive
    stale_after_s: float = 30.0          # no inbound message for this long -> unhealthy
    # timeouts
    open_timeout_s: float = 10.0
    ping_interval_s: float = 20.0


TickHandler = Callable[[Tick], Awaitable[None]]


class FeedConnector:
    """
    Persistent websocket client for the upstream quote stream.

    Lifecycle:
      - Connect → Subscribe → (first connect only) Backfill → Stream
      - On any error/close, wait with geometric backoff (capped) and reconnect;
        the attempt counter resets on every successful connect
      - Gives up (STOPPED) after `max_reconnect_attempts` consecutive failures

    Each parsed tick is awaited through `on_tick` before the next message is
    read, so downstream processing observes ticks strictly in arrival order.

    Usage:
        cfg = FeedConfig(ws_url=..., api_key=..., symbols=["XAU/USD"])
        feed = FeedConnector(cfg, on_tick=router)
        await feed.start()   # runs until stop() or attempts exhausted
    """

    def __init__(
        self,
        cfg: FeedConfig,
        on_tick: TickHandler,
        *,
        backfill_fetch: Optional[Callable[[], Awaitable[Any]]] = None,
        backfill_apply: Optional[Callable[[Any], Awaitable[None]]] = None,
    ):
        self.cfg = cfg
        self._on_tick = on_tick
        self._backfill_fetch = backfill_fetch
        self._backfill_apply = backfill_apply
        self._backfill_done = False

        self._log = structlog.get_logger("feed_ws")
        self._stop = asyncio.Event()
        self._ws = None
        self._backoff = ReconnectBackoff(
            base_s=cfg.reconnect_base_s,
            factor=cfg.reconnect_factor,
            max_s=cfg.reconnect_max_s,
            max_attempts=cfg.max_reconnect_attempts,
        )

        self.state: FeedState = FeedState.DISCONNECTED
        self.connects: int = 0
        self.ticks_received: int = 0
        self.messages_dropped: int = 0
        self._last_msg_ts: float = 0.0

    # ---------------------------- public API ---------------------------- #

    async def start(self) -> None:
        if self.state not in (FeedState.DISCONNECTED,):
            self._log.warning("ws_already_started", state=self.state.value)
            return
        while not self._stop.is_set():
            self._set_state(FeedState.CONNECTING)
            try:
                await self._connect_and_stream()
            except asyncio.CancelledError:
                # allow cooperative shutdown without error
                break
            except Exception as e:
                if self._stop.is_set():
                    break
                self._log.warning("ws_error", err=str(e), err_type=type(e).__name__)

            if self._stop.is_set():
                break
            if self._backoff.exhausted:
                self._log.error("ws_max_reconnect_attempts", attempts=self._backoff.attempts)
                break

            delay = self._backoff.next_delay()
            self._set_state(FeedState.RECONNECTING)
            self._log.info(
                "ws_reconnect_scheduled",
                attempt=self._backoff.attempts,
                max_attempts=self.cfg.max_reconnect_attempts,
                delay_s=round(delay, 3),
            )
            # stop() wakes this wait, which cancels the pending reconnect
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=delay)

        self._set_state(FeedState.STOPPED)
        self._log.info("ws_loop_exit")

    async def stop(self) -> None:
        self._stop.set()
        if self._ws is not None and hasattr(self._ws, "close"):
            try:
                await self._ws.close()
            except Exception as e:
                self._log.debug("ws_close_error", err=str(e))

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @property
    def reconnect_attempts(self) -> int:
        return self._backoff.attempts

    # --------------------------- core internals ------------------------- #

    def _url(self) -> str:
        url = self.cfg.ws_url
        if "apikey=" in url:
            return url
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}apikey={self.cfg.api_key}"

    async def _connect_and_stream(self) -> None:
        """
        Establishes connection, subscribes, backfills once, then streams messages.
        Returns on stop() or when the server closes the socket; raises on errors.
        """
        self._log.info("ws_connecting", url=self.cfg.ws_url)
        async with ws_connect(
            self._url(),
            open_timeout=self.cfg.open_timeout_s,
            ping_interval=self.cfg.ping_interval_s,
            ping_timeout=None,
            max_queue=None,
        ) as ws:
            self._ws = ws
            self.connects += 1
            self._backoff.reset()
            self._last_msg_ts = utc_now_s()
            self._set_state(FeedState.CONNECTED)

            await self._subscribe(ws)
            await self._maybe_backfill()

            hb = asyncio.create_task(self._heartbeat_loop(ws), name="feed-heartbeat")
            try:
                await self._stream_loop(ws)
            finally:
                hb.cancel()
                with suppress(asyncio.CancelledError):
                    await hb
                self._ws = None

    async def _subscribe(self, ws) -> None:
        msg = {"action": "subscribe", "params": {"symbols": ",".join(self.cfg.symbols)}}
        await ws.send(json.dumps(msg))
        self._log.info("ws_subscribed", symbols=self.cfg.symbols)

    async def _maybe_backfill(self) -> None:
        if self._backfill_done or self._backfill_fetch is None:
            return
        self._backfill_done = True
        try:
            result = await self._backfill_fetch()
        except Exception as e:
            # live ticks will populate history instead
            self._log.warning("backfill_failed", err=str(e))
            return
        if self._stop.is_set():
            self._log.info("backfill_discarded_after_stop")
            return
        if self._backfill_apply is not None:
            try:
                await self._backfill_apply(result)
            except Exception as e:
                self._log.exception("backfill_apply_failed", err=str(e))

    async def _stream_loop(self, ws) -> None:
        """
        Reads messages and hands ticks to the handler. Monitors staleness and stop signal.
        """
        while not self._stop.is_set():
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self._recv_timeout())
            except asyncio.TimeoutError:
                age = utc_now_s() - self._last_msg_ts
                if age > self.cfg.stale_after_s:
                    self._log.warning("ws_stale_no_messages", age_s=round(age, 3))
                continue
            except ConnectionClosed as e:
                if self._stop.is_set():
                    return
                self._log.warning("ws_closed", code=getattr(e.rcvd, "code", None), reason=str(e))
                raise

            self._last_msg_ts = utc_now_s()

            try:
                msg = json.loads(raw)
            except (TypeError, ValueError) as e:
                self.messages_dropped += 1
                self._log.warning("ws_json_error", err=str(e), snippet=str(raw)[:200])
                continue

            batch = msg if isinstance(msg, list) else [msg]
            for m in batch:
                if self._stop.is_set():
                    return
                if not isinstance(m, dict):
                    self.messages_dropped += 1
                    self._log.warning("ws_unexpected_message", snippet=str(m)[:200])
                    continue
                await self._handle_message(m)

        self._log.info("ws_stream_loop_exit")

    async def _handle_message(self, m: dict) -> None:
        kind = parser.message_kind(m)
        if kind == "price":
            try:
                tick = parser.parse_price_msg(m, default_symbol=self._default_symbol())
            except ValueError as e:
                self.messages_dropped += 1
                self._log.warning("parse_price_error", err=str(e), snippet=str(m)[:200])
                return
            if tick is None:
                return
            self.ticks_received += 1
            try:
                await self._on_tick(tick)
            except Exception as e:
                # a failed tick never takes the connection down
                self._log.exception("tick_handler_error", symbol=tick.symbol, err=str(e))
            return

        if kind == "heartbeat":
            return
        if kind == "status":
            fails = m.get("fails") or []
            if fails:
                self._log.warning("ws_subscribe_fails", fails=fails)
            else:
                self._log.debug("ws_status", msg=m)
            return
        if kind == "error":
            self._log.warning("feed_stream_error", msg=m)
            return
        # else: ignore

    async def _heartbeat_loop(self, ws) -> None:
        if self.cfg.heartbeat_interval_s <= 0:
            return
        while not self._stop.is_set():
            await asyncio.sleep(self.cfg.heartbeat_interval_s)
            try:
                await ws.send(json.dumps({"action": "heartbeat"}))
            except ConnectionClosed:
                return

    # --------------------------- helpers -------------------------------- #

    def healthy(self) -> bool:
        """Quick health signal for /healthz."""
        if self.state is not FeedState.CONNECTED:
            return False
        return (utc_now_s() - self._last_msg_ts) <= self.cfg.stale_after_s

    def last_message_age_s(self) -> float:
        return max(0.0, utc_now_s() - self._last_msg_ts) if self._last_msg_ts else float("inf")

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "connects": self.connects,
            "reconnect_attempts": self._backoff.attempts,
            "ticks_received": self.ticks_received,
            "messages_dropped": self.messages_dropped,
            "last_message_age_s": self.last_message_age_s(),
        }

    def _default_symbol(self) -> str | None:
        return self.cfg.symbols[0] if len(self.cfg.symbols) == 1 else None

    def _recv_timeout(self) -> float:
        # how long we're okay waiting for a message before we check staleness
        return max(1.0, min(self.cfg.stale_after_s, 5.0))

    def _set_state(self, state: FeedState) -> None:
        if state is not self.state:
            self._log.debug("ws_state", old=self.state.value, new=state.value)
            self.state = state
