from __future__ import annotations

import math
from typing import Optional

import numpy as np

from sigmon.utils.types import PricePoint

_NAN = float("nan")


def _opt(x: float) -> Optional[float]:
    return None if math.isnan(x) else float(x)


class PriceBuffer:
    """
    Fixed-size circular buffer of recent PricePoints for one symbol.
    Arrays:
      ts, price, o, h, l, c, v [float64]   (NaN = field not supplied)

    Single writer (the pipeline); readers get copies via snapshot(), so a
    long-running consumer never sees a concurrent append.
    A point whose timestamp is not strictly after the last one, or whose
    timestamp or price is not finite, is rejected.
    """
    __slots__ = ("capacity", "size", "head", "rejected", "ts", "price", "o", "h", "l", "c", "v")

    def __init__(self, capacity: int):
        if int(capacity) <= 0:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self.size = 0
        self.head = 0  # next write index
        self.rejected = 0
        self.ts = np.empty(self.capacity, dtype=np.float64)
        self.price = np.empty(self.capacity, dtype=np.float64)
        self.o = np.empty(self.capacity, dtype=np.float64)
        self.h = np.empty(self.capacity, dtype=np.float64)
        self.l = np.empty(self.capacity, dtype=np.float64)
        self.c = np.empty(self.capacity, dtype=np.float64)
        self.v = np.empty(self.capacity, dtype=np.float64)

    def __len__(self) -> int:
        return self.size

    def append(self, point: PricePoint) -> bool:
        """Append in O(1); evicts the oldest point once full. Returns False if rejected."""
        last = self.last_ts()
        if not (math.isfinite(point.ts) and math.isfinite(point.price)):
            self.rejected += 1
            return False
        if last is not None and not point.ts > last:
            self.rejected += 1
            return False
        i = self.head
        self.ts[i] = point.ts
        self.price[i] = point.price
        self.o[i] = _NAN if point.open is None else point.open
        self.h[i] = _NAN if point.high is None else point.high
        self.l[i] = _NAN if point.low is None else point.low
        self.c[i] = _NAN if point.close is None else point.close
        self.v[i] = _NAN if point.volume is None else point.volume
        self.head = (i + 1) % self.capacity
        if self.size < self.capacity:
            self.size += 1
        return True

    def last_ts(self) -> float | None:
        if self.size == 0:
            return None
        idx = (self.head - 1) % self.capacity
        return float(self.ts[idx])

    def _order(self, n: int | None = None) -> np.ndarray:
        """Physical indices of the last n points in time order."""
        n = self.size if n is None else max(0, min(int(n), self.size))
        start = (self.head - n) % self.capacity
        return (start + np.arange(n)) % self.capacity

    def snapshot(self, n: int | None = None) -> tuple[PricePoint, ...]:
        """Read-only copy of the last n points (all by default), oldest first."""
        return tuple(self._point(int(i)) for i in self._order(n))

    def _point(self, i: int) -> PricePoint:
        return PricePoint(
            ts=float(self.ts[i]),
            price=float(self.price[i]),
            open=_opt(self.o[i]),
            high=_opt(self.h[i]),
            low=_opt(self.l[i]),
            close=_opt(self.c[i]),
            volume=_opt(self.v[i]),
        )
