from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, TypedDict, Union

# ---- ingest-level primitives ----

@dataclass(slots=True)
class Tick:
    symbol: str
    price: float
    ts: float  # epoch seconds
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PricePoint:
    """
    One accepted sample of the feed (a live tick or a backfilled bar).
    """
    ts: float         # epoch seconds
    price: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None

    @classmethod
    def from_tick(cls, t: Tick) -> "PricePoint":
        return cls(ts=t.ts, price=t.price, open=t.open, high=t.high,
                   low=t.low, close=t.close, volume=t.volume)


# ---- indicator values (never mutated once appended) ----

@dataclass(frozen=True, slots=True)
class RSIValue:
    ts: float
    rsi: float


@dataclass(frozen=True, slots=True)
class MACDValue:
    ts: float
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True, slots=True)
class StochasticValue:
    ts: float
    k: float
    d: float


@dataclass(frozen=True, slots=True)
class BollingerValue:
    ts: float
    upper: float
    middle: float
    lower: float


IndicatorValue = Union[RSIValue, MACDValue, StochasticValue, BollingerValue]

IndicatorKind = Literal["rsi", "macd", "stochastic", "bollinger"]


@dataclass(frozen=True, slots=True)
class IndicatorSpec:
    """(kind, params) identifies one independent indicator series, e.g. ('rsi', (14,))."""
    kind: IndicatorKind
    params: tuple

    @property
    def key(self) -> str:
        # rsi_14, macd_12_26_9, bollinger_20_2 ...
        return "_".join([self.kind, *(f"{p:g}" for p in self.params)])


# ---- push events (serializable, delivered through fan-out) ----

class TickEvent(TypedDict):
    type: Literal["tick"]
    symbol: str
    price: float
    ts: float


class IndicatorEvent(TypedDict, total=False):
    type: Literal["indicators"]
    symbol: str
    ts: float
    # each entry present only once its minimum window is reached
    rsi: dict
    macd: dict
    stochastic: dict
    bollinger: dict


class SignalHistoryEvent(TypedDict):
    type: Literal["signals"]
    symbol: str
    signals: list[dict]


class BuiltinSignalEvent(TypedDict, total=False):
    type: Literal["builtin_signals"]
    symbol: str
    status: dict           # latest stochastic / confirmation status
    history: list[dict]    # only on a full-history load, most recent first


SignalEvent = Union[SignalHistoryEvent, BuiltinSignalEvent]
