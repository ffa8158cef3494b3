from __future__ import annotations

import asyncio
from typing import Optional

import redis.asyncio as redis
import structlog

from sigmon.utils.types import IndicatorEvent, TickEvent

log = structlog.get_logger("redis_mirror")

# IndicatorEvent section -> fields written
_SECTIONS = {
    "rsi": ("rsi",),
    "macd": ("macd", "signal", "histogram"),
    "stochastic": ("k", "d"),
    "bollinger": ("upper", "middle", "lower"),
}


def _key(symbol: str, field: str) -> str:
    return f"ts:{symbol.replace('/', '')}:{field}"


class RedisMirror:
    """
    Optional RedisTimeSeries mirror of price and indicator values.
    Registered as a fan-out subscriber; writes are best-effort through a
    bounded queue drained by one task, and dropped under pressure.
    """
    def __init__(self, url: str, retention_ms: int = 24 * 60 * 60 * 1000, enabled: bool = False,
                 client: Optional[redis.Redis] = None, maxsize: int = 5000):
        self.enabled = enabled
        self.url = url
        self.retention_ms = retention_ms
        self._r: Optional[redis.Redis] = client
        self._q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._created: set[str] = set()
        self.dropped = 0
        self.errors = 0

    async def start(self):
        if not self.enabled:
            return
        if self._r is None:
            self._r = redis.from_url(self.url, decode_responses=True)
        self._task = asyncio.create_task(self._writer_loop(), name="redis-mirror")
        log.info("redis_mirror_started", url=self.url)

    async def stop(self):
        if not self.enabled:
            return
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._r:
            await self._r.aclose()

    # ---------- fan-out callbacks (synchronous, never block) ----------

    def on_tick(self, evt: TickEvent) -> None:
        self._enqueue(evt["symbol"], evt["ts"], {"price": evt["price"]})

    def on_indicators(self, evt: IndicatorEvent) -> None:
        values: dict[str, float] = {}
        for section, names in _SECTIONS.items():
            sub = evt.get(section)
            if not sub:
                continue
            for n in names:
                if sub.get(n) is not None:
                    values[n] = float(sub[n])
        if values:
            self._enqueue(evt["symbol"], evt["ts"], values)

    def _enqueue(self, symbol: str, ts: float, values: dict[str, float]) -> None:
        if not self.enabled:
            return
        try:
            self._q.put_nowait((symbol, int(ts * 1000), values))
        except asyncio.QueueFull:
            # drop under pressure
            self.dropped += 1

    async def write(self, symbol: str, ts_ms: int, values: dict[str, float]) -> None:
        assert self._r is not None
        p = self._r.pipeline()
        for field, v in values.items():
            key = _key(symbol, field)
            if key not in self._created:
                # create-if-missing with retention
                p.execute_command("TS.CREATE", key, "RETENTION", self.retention_ms,
                                  "DUPLICATE_POLICY", "LAST", "LABELS", "symbol", symbol, "field", field)
            p.execute_command("TS.ADD", key, ts_ms, v, "ON_DUPLICATE", "LAST")
        # TS.CREATE on an existing key errors; don't let that abort the adds
        await p.execute(raise_on_error=False)
        self._created.update(_key(symbol, f) for f in values)

    async def _writer_loop(self):
        try:
            while True:
                symbol, ts_ms, values = await self._q.get()
                try:
                    await self.write(symbol, ts_ms, values)
                except Exception as e:
                    # ignore intermittent errors; it's a mirror
                    self.errors += 1
                    log.debug("redis_mirror_write_failed", err=str(e))
        except asyncio.CancelledError:
            return
