from __future__ import annotations

import math
from typing import Literal, Optional

from sigmon.utils.time import to_epoch_s, utc_now_s
from sigmon.utils.types import PricePoint, Tick

MessageKind = Literal["price", "heartbeat", "status", "error", "unknown"]

_STATUS_EVENTS = ("subscribe-status", "unsubscribe-status", "reset-status", "connected")


def message_kind(m: dict) -> MessageKind:
    """
    Classify one decoded feed message.

    Twelve Data quote stream examples:
      {"event":"price","symbol":"XAU/USD","price":2031.55,"timestamp":1700000000}
      {"event":"heartbeat","status":"ok"}
      {"event":"subscribe-status","status":"ok","success":[...],"fails":[]}
    """
    ev = m.get("event") or m.get("type")
    if ev == "price" or (ev is None and "price" in m):
        return "price"
    if ev == "heartbeat":
        return "heartbeat"
    if ev in _STATUS_EVENTS:
        return "status"
    if ev == "error" or m.get("status") == "error":
        return "error"
    return "unknown"


def parse_number(v) -> Optional[float]:
    """float(v) if v is a finite number or numeric string, else None."""
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def parse_price_msg(m: dict, default_symbol: str | None = None) -> Optional[Tick]:
    """
    Return a Tick if `m` is a price message; None for anything else.

    Raises ValueError for a price message without a parseable numeric price,
    so the caller can log and drop it.
    """
    if message_kind(m) != "price":
        return None

    px = parse_number(m.get("price"))
    if px is None:
        raise ValueError(f"unparseable price: {m.get('price')!r}")

    sym = m.get("symbol") or default_symbol
    if not sym:
        raise ValueError("price message without symbol")

    ts = to_epoch_s(m.get("timestamp") if m.get("timestamp") is not None else m.get("time"))
    if ts is None:
        ts = utc_now_s()

    return Tick(
        symbol=str(sym),
        price=px,
        ts=ts,
        open=parse_number(m.get("open")),
        high=parse_number(m.get("high")),
        low=parse_number(m.get("low")),
        close=parse_number(m.get("close")),
        volume=parse_number(m.get("volume", m.get("day_volume"))),
    )


def parse_bar(row: dict) -> Optional[PricePoint]:
    """
    Historical OHLCV row -> PricePoint (price = close). None when the close is
    unusable or the timestamp can't be read.
    """
    close = parse_number(row.get("close", row.get("price")))
    ts = to_epoch_s(row.get("datetime") or row.get("time") or row.get("timestamp"))
    if close is None or ts is None:
        return None
    return PricePoint(
        ts=ts,
        price=close,
        open=parse_number(row.get("open")),
        high=parse_number(row.get("high")),
        low=parse_number(row.get("low")),
        close=close,
        volume=parse_number(row.get("volume")),
    )
