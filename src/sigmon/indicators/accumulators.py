# src/sigmon/indicators/accumulators.py
from __future__ import annotations

from collections import deque
from typing import Generic, Iterable, List, Optional, Tuple, TypeVar

import numpy as np

# ----------------------------
# Default parameter presets
# ----------------------------
DEFAULT_RSI        = 14
DEFAULT_MACD       = (12, 26, 9)       # fast, slow, signal
DEFAULT_STOCHASTIC = (14, 3, 3)        # kPeriod, dPeriod, smoothing
DEFAULT_BOLLINGER  = (20, 2.0)         # period, stddev multiplier

# Sentinel conventions (kept as-is; not "undefined"):
RSI_NO_LOSS        = 100.0             # average loss == 0
STOCH_FLAT_RANGE   = 50.0              # highest high == lowest low

T = TypeVar("T")


def _check_period(name: str, n: int) -> int:
    n = int(n)
    if n < 1:
        raise ValueError(f"{name} must be >= 1, got {n}")
    return n


class Accumulator(Generic[T]):
    """
    Stateful indicator: push() one price at a time (incremental mode) or
    seed() a full history (batch mode). seed() is reset + push over the
    sequence, so both modes agree exactly on overlapping points.
    """
    min_points: int = 1

    def push(self, price: float) -> Optional[T]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError

    def seed(self, prices: Iterable[float]) -> List[Optional[T]]:
        self.reset()
        return [self.push(float(p)) for p in prices]


# ============================================================
# Building blocks
# ============================================================

class RollingWindow:
    """Last-n values with an SMA over exactly n values."""
    __slots__ = ("n", "_buf")

    def __init__(self, n: int):
        self.n = _check_period("window", n)
        self._buf: deque[float] = deque(maxlen=self.n)

    def push(self, v: float) -> None:
        self._buf.append(v)

    @property
    def full(self) -> bool:
        return len(self._buf) == self.n

    def mean(self) -> Optional[float]:
        return sum(self._buf) / self.n if self.full else None

    def values(self) -> np.ndarray:
        return np.fromiter(self._buf, dtype=np.float64, count=len(self._buf))


class EMAAccumulator(Accumulator[float]):
    """
    EMA seeded with the simple mean of the first `period` values;
    afterwards EMA(t) = (v(t) - EMA(t-1)) * 2/(period+1) + EMA(t-1).
    """

    def __init__(self, period: int):
        self.period = _check_period("period", period)
        self.min_points = self.period
        self._k = 2.0 / (self.period + 1.0)
        self.reset()

    def reset(self) -> None:
        self._seed: list[float] = []
        self.value: Optional[float] = None

    def push(self, v: float) -> Optional[float]:
        if self.value is None:
            self._seed.append(v)
            if len(self._seed) < self.period:
                return None
            self.value = sum(self._seed) / self.period
            self._seed = []
            return self.value
        self.value = (v - self.value) * self._k + self.value
        return self.value


# ============================================================
# Indicators
# ============================================================

class RSIAccumulator(Accumulator[float]):
    """
    Wilder RSI. Seed averages = simple mean of the first `period` gains/losses,
    then avg = (prev_avg * (period-1) + new) / period. Needs period+1 prices.
    """

    def __init__(self, period: int = DEFAULT_RSI):
        self.period = _check_period("period", period)
        self.min_points = self.period + 1
        self.reset()

    def reset(self) -> None:
        self._prev: Optional[float] = None
        self._changes = 0
        self._sum_gain = 0.0
        self._sum_loss = 0.0
        self.avg_gain: Optional[float] = None
        self.avg_loss: Optional[float] = None

    def push(self, price: float) -> Optional[float]:
        if self._prev is None:
            self._prev = price
            return None
        delta = price - self._prev
        self._prev = price
        gain = delta if delta > 0.0 else 0.0
        loss = -delta if delta < 0.0 else 0.0
        self._changes += 1

        n = self.period
        if self.avg_gain is None:
            self._sum_gain += gain
            self._sum_loss += loss
            if self._changes < n:
                return None
            self.avg_gain = self._sum_gain / n
            self.avg_loss = self._sum_loss / n
        else:
            self.avg_gain = (self.avg_gain * (n - 1) + gain) / n
            self.avg_loss = (self.avg_loss * (n - 1) + loss) / n

        if self.avg_loss == 0.0:
            return RSI_NO_LOSS
        rs = self.avg_gain / self.avg_loss
        return 100.0 - 100.0 / (1.0 + rs)


class MACDAccumulator(Accumulator[Tuple[float, float, float]]):
    """
    MACD = EMA(fast) - EMA(slow); signal = EMA(signal) of the MACD line;
    histogram = MACD - signal. Emits from the (slow+signal)-th price on.
    """

    def __init__(self, fast: int = 12, slow: int = 26, signal: int = 9):
        self.fast = _check_period("fast", fast)
        self.slow = _check_period("slow", slow)
        self.signal = _check_period("signal", signal)
        self.min_points = self.slow + self.signal
        self.reset()

    def reset(self) -> None:
        self._ema_fast = EMAAccumulator(self.fast)
        self._ema_slow = EMAAccumulator(self.slow)
        self._ema_signal = EMAAccumulator(self.signal)
        self._count = 0

    def push(self, price: float) -> Optional[Tuple[float, float, float]]:
        self._count += 1
        ef = self._ema_fast.push(price)
        es = self._ema_slow.push(price)
        if ef is None or es is None:
            return None
        macd = ef - es
        sig = self._ema_signal.push(macd)
        if sig is None or self._count < self.min_points:
            return None
        return macd, sig, macd - sig


class StochasticAccumulator(Accumulator[Tuple[float, float]]):
    """
    raw %K = (close - lowest) / (highest - lowest) * 100 over k_period prices
    (50 on a zero range); %K = SMA(smoothing) of raw %K; %D = SMA(d_period) of %K.
    High/low come from the price window itself.
    """

    def __init__(self, k_period: int = 14, d_period: int = 3, smoothing: int = 3):
        self.k_period = _check_period("k_period", k_period)
        self.d_period = _check_period("d_period", d_period)
        self.smoothing = _check_period("smoothing", smoothing)
        self.min_points = self.k_period + self.smoothing + self.d_period - 2
        self.reset()

    def reset(self) -> None:
        self._prices = RollingWindow(self.k_period)
        self._raw_k = RollingWindow(self.smoothing)
        self._k = RollingWindow(self.d_period)

    def push(self, price: float) -> Optional[Tuple[float, float]]:
        self._prices.push(price)
        if not self._prices.full:
            return None
        window = self._prices.values()
        hi = float(window.max())
        lo = float(window.min())
        raw = STOCH_FLAT_RANGE if hi == lo else (price - lo) / (hi - lo) * 100.0

        self._raw_k.push(raw)
        k = self._raw_k.mean()
        if k is None:
            return None
        self._k.push(k)
        d = self._k.mean()
        if d is None:
            return None
        return k, d


class BollingerAccumulator(Accumulator[Tuple[float, float, float]]):
    """middle = SMA(period); band = mult * population stddev of the window."""

    def __init__(self, period: int = 20, mult: float = 2.0):
        self.period = _check_period("period", period)
        self.mult = float(mult)
        self.min_points = self.period
        self.reset()

    def reset(self) -> None:
        self._window = RollingWindow(self.period)

    def push(self, price: float) -> Optional[Tuple[float, float, float]]:
        self._window.push(price)
        if not self._window.full:
            return None
        w = self._window.values()
        middle = float(w.mean())
        band = self.mult * float(w.std())  # ddof=0 -> population
        return middle + band, middle, middle - band


# ============================================================
# Batch helpers (NaN during warm-up)
# ============================================================

def _as_prices(c) -> list[float]:
    return [float(x) for x in np.asarray(c, dtype=np.float64)]


def compute_rsi_series(c, period: int = DEFAULT_RSI) -> np.ndarray:
    out = RSIAccumulator(period).seed(_as_prices(c))
    return np.array([np.nan if v is None else v for v in out], dtype=np.float64)


def compute_macd_series(c, fast: int = 12, slow: int = 26, signal: int = 9) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    out = MACDAccumulator(fast, slow, signal).seed(_as_prices(c))
    arr = np.array([(np.nan,) * 3 if v is None else v for v in out], dtype=np.float64).reshape(-1, 3)
    return arr[:, 0], arr[:, 1], arr[:, 2]


def compute_stochastic_series(c, k_period: int = 14, d_period: int = 3, smoothing: int = 3) -> Tuple[np.ndarray, np.ndarray]:
    out = StochasticAccumulator(k_period, d_period, smoothing).seed(_as_prices(c))
    arr = np.array([(np.nan,) * 2 if v is None else v for v in out], dtype=np.float64).reshape(-1, 2)
    return arr[:, 0], arr[:, 1]


def compute_bollinger_series(c, period: int = 20, mult: float = 2.0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    out = BollingerAccumulator(period, mult).seed(_as_prices(c))
    arr = np.array([(np.nan,) * 3 if v is None else v for v in out], dtype=np.float64).reshape(-1, 3)
    return arr[:, 0], arr[:, 1], arr[:, 2]
