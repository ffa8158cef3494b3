from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Dict, Iterable, List, Optional

from sigmon.utils.time import bucket_start
from sigmon.utils.types import (
    BollingerValue,
    MACDValue,
    PricePoint,
    RSIValue,
    StochasticValue,
)

# rule indicator key -> UnifiedDataPoint field
INDICATOR_FIELDS: Dict[str, str] = {
    "PRICE": "price",
    "RSI": "rsi",
    "MACD": "macd",
    "MACD_SIGNAL": "signal",
    "MACD_HISTOGRAM": "histogram",
    "STOCH_K": "k",
    "STOCH_D": "d",
    "BB_UPPER": "upper",
    "BB_MIDDLE": "middle",
    "BB_LOWER": "lower",
}


@dataclass(slots=True)
class UnifiedDataPoint:
    """Sparse merge of price and indicator values at one bucket start."""
    ts: int
    price: Optional[float] = None
    rsi: Optional[float] = None
    macd: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None
    k: Optional[float] = None
    d: Optional[float] = None
    upper: Optional[float] = None
    middle: Optional[float] = None
    lower: Optional[float] = None

    def get(self, indicator_key: str) -> Optional[float]:
        """Value for a rule indicator key (PRICE, RSI, STOCH_K ...); None if absent or unknown."""
        name = INDICATOR_FIELDS.get(str(indicator_key).upper())
        if name is None:
            return None
        v = getattr(self, name)
        if v is None or not math.isfinite(v):
            return None
        return v

    def to_dict(self) -> dict:
        out: dict = {"ts": self.ts}
        for f in fields(self)[1:]:
            v = getattr(self, f.name)
            if v is not None:
                out[f.name] = v
        return out


def build_unified_series(
    points: Iterable[PricePoint],
    *,
    rsi: Iterable[RSIValue] = (),
    macd: Iterable[MACDValue] = (),
    stochastic: Iterable[StochasticValue] = (),
    bollinger: Iterable[BollingerValue] = (),
    granularity_s: int = 60,
) -> List[UnifiedDataPoint]:
    """
    Bucket every series to `granularity_s` and left-join on the bucket start.
    Within a bucket later values overwrite earlier ones field by field.
    Output is ascending with unique timestamps.
    """
    rows: Dict[int, UnifiedDataPoint] = {}

    def row(ts: float) -> UnifiedDataPoint:
        b = bucket_start(ts, granularity_s)
        r = rows.get(b)
        if r is None:
            r = rows[b] = UnifiedDataPoint(ts=b)
        return r

    for p in points:
        row(p.ts).price = p.price
    for v in rsi:
        row(v.ts).rsi = v.rsi
    for v in macd:
        r = row(v.ts)
        r.macd, r.signal, r.histogram = v.macd, v.signal, v.histogram
    for v in stochastic:
        r = row(v.ts)
        r.k, r.d = v.k, v.d
    for v in bollinger:
        r = row(v.ts)
        r.upper, r.middle, r.lower = v.upper, v.middle, v.lower

    return [rows[ts] for ts in sorted(rows)]
