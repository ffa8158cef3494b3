from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from sigmon.ingest.parser import parse_bar
from sigmon.utils.errors import FeedError
from sigmon.utils.types import PricePoint

log = structlog.get_logger("historical")


@dataclass(slots=True)
class HistoricalConfig:
    api_key: str
    rest_url: str = "https://api.twelvedata.com"
    timeout_s: float = 15.0
    timezone: str = "UTC"


class HistoricalClient:
    """
    REST client for historical OHLCV bars (Twelve Data `time_series`).

    The endpoint returns newest-first; `fetch_bars` returns oldest-first
    PricePoints ready to be appended to a PriceBuffer.
    """

    def __init__(self, cfg: HistoricalConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch_bars(
        self,
        symbol: str,
        interval: str,
        *,
        outputsize: Optional[int] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[PricePoint]:
        if self._session is None:
            await self.start()
        assert self._session is not None

        params = {
            "symbol": symbol,
            "interval": interval,
            "apikey": self.cfg.api_key,
            "format": "JSON",
            "timezone": self.cfg.timezone,
        }
        if outputsize:
            params["outputsize"] = str(int(outputsize))
        if start:
            params["start_date"] = start
        if end:
            params["end_date"] = end

        url = f"{self.cfg.rest_url.rstrip('/')}/time_series"
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status != 200:
                    raise FeedError(f"time_series HTTP {resp.status}")
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedError(f"time_series request failed: {e}") from e

        if not isinstance(payload, dict):
            raise FeedError("time_series returned a non-object payload")
        if payload.get("status") == "error":
            raise FeedError(f"time_series error: {payload.get('message')}")

        values = payload.get("values")
        if not isinstance(values, list):
            return []

        bars: list[PricePoint] = []
        skipped = 0
        for row in reversed(values):
            bar = parse_bar(row) if isinstance(row, dict) else None
            if bar is None:
                skipped += 1
                continue
            bars.append(bar)
        bars.sort(key=lambda b: b.ts)
        if skipped:
            log.warning("historical_rows_skipped", symbol=symbol, skipped=skipped)
        log.info("historical_loaded", symbol=symbol, interval=interval, bars=len(bars))
        return bars
