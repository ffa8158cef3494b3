# src/sigmon/indicators/engine.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from sigmon.indicators.accumulators import (
    Accumulator,
    BollingerAccumulator,
    MACDAccumulator,
    RSIAccumulator,
    StochasticAccumulator,
)
from sigmon.utils.types import (
    BollingerValue,
    IndicatorSpec,
    IndicatorValue,
    MACDValue,
    PricePoint,
    RSIValue,
    StochasticValue,
)

log = structlog.get_logger("indicators")


@dataclass(slots=True)
class IndicatorsConfig:
    rsi_period: int = 14
    macd: tuple[int, int, int] = (12, 26, 9)          # fast, slow, signal
    stochastic: tuple[int, int, int] = (14, 3, 3)     # kPeriod, dPeriod, smoothing
    bollinger: tuple[int, float] = (20, 2.0)          # period, stddev multiplier
    max_history: int = 2000                           # values kept per series

    def specs(self) -> List[IndicatorSpec]:
        return [
            IndicatorSpec("rsi", (int(self.rsi_period),)),
            IndicatorSpec("macd", tuple(int(x) for x in self.macd)),
            IndicatorSpec("stochastic", tuple(int(x) for x in self.stochastic)),
            IndicatorSpec("bollinger", (int(self.bollinger[0]), float(self.bollinger[1]))),
        ]


def make_accumulator(spec: IndicatorSpec) -> Accumulator:
    if spec.kind == "rsi":
        return RSIAccumulator(*spec.params)
    if spec.kind == "macd":
        return MACDAccumulator(*spec.params)
    if spec.kind == "stochastic":
        return StochasticAccumulator(*spec.params)
    if spec.kind == "bollinger":
        return BollingerAccumulator(*spec.params)
    raise ValueError(f"unknown indicator kind: {spec.kind!r}")


def to_value(spec: IndicatorSpec, ts: float, raw) -> IndicatorValue:
    """Wrap an accumulator output with its timestamp."""
    if spec.kind == "rsi":
        return RSIValue(ts=ts, rsi=raw)
    if spec.kind == "macd":
        macd, sig, hist = raw
        return MACDValue(ts=ts, macd=macd, signal=sig, histogram=hist)
    if spec.kind == "stochastic":
        k, d = raw
        return StochasticValue(ts=ts, k=k, d=d)
    upper, middle, lower = raw
    return BollingerValue(ts=ts, upper=upper, middle=middle, lower=lower)


class IndicatorEngine:
    """
    Per-symbol indicator cache.

    - update(point): incremental mode, one accumulator step per accepted point
    - seed(points):  batch mode, resets accumulators and rebuilds histories
    - compute(spec, points): batch for an arbitrary parameter tuple, cache untouched

    Histories hold only defined values (warm-up points are skipped) and are
    bounded to cfg.max_history. Values are never mutated after append.
    """

    def __init__(self, cfg: Optional[IndicatorsConfig] = None, specs: Optional[Iterable[IndicatorSpec]] = None):
        self.cfg = cfg or IndicatorsConfig()
        self._acc: Dict[IndicatorSpec, Accumulator] = {}
        self._hist: Dict[IndicatorSpec, deque] = {}
        for spec in (specs if specs is not None else self.cfg.specs()):
            self._register(spec)

    # ---------- registration ----------

    def _register(self, spec: IndicatorSpec) -> None:
        self._acc[spec] = make_accumulator(spec)
        self._hist[spec] = deque(maxlen=self.cfg.max_history)

    @property
    def specs(self) -> List[IndicatorSpec]:
        return list(self._acc)

    def spec_for(self, kind: str) -> Optional[IndicatorSpec]:
        """First registered spec of a kind (the configured default)."""
        for spec in self._acc:
            if spec.kind == kind:
                return spec
        return None

    # ---------- incremental mode ----------

    def update(self, point: PricePoint) -> Dict[IndicatorSpec, IndicatorValue]:
        """Advance every series by one point; returns only the values that are defined."""
        out: Dict[IndicatorSpec, IndicatorValue] = {}
        for spec, acc in self._acc.items():
            raw = acc.push(point.price)
            if raw is None:
                continue
            val = to_value(spec, point.ts, raw)
            self._hist[spec].append(val)
            out[spec] = val
        return out

    # ---------- batch mode ----------

    def seed(self, points: Sequence[PricePoint]) -> None:
        for spec in self._acc:
            self._seed_one(spec, points)
        log.info("indicators_seeded", points=len(points),
                 values={s.key: len(self._hist[s]) for s in self._acc})

    def _seed_one(self, spec: IndicatorSpec, points: Sequence[PricePoint]) -> None:
        acc = self._acc[spec]
        hist = self._hist[spec]
        hist.clear()
        outs = acc.seed(p.price for p in points)
        for p, raw in zip(points, outs):
            if raw is not None:
                hist.append(to_value(spec, p.ts, raw))

    def compute(self, spec: IndicatorSpec, points: Sequence[PricePoint]) -> List[IndicatorValue]:
        """Full series for `spec` over `points` without touching the cache."""
        acc = make_accumulator(spec)
        outs = acc.seed(p.price for p in points)
        return [to_value(spec, p.ts, raw) for p, raw in zip(points, outs) if raw is not None]

    def ensure(self, spec: IndicatorSpec, points: Sequence[PricePoint]) -> None:
        """Start caching a new parameter tuple, seeded from `points`."""
        if spec in self._acc:
            return
        self._register(spec)
        self._seed_one(spec, points)
        log.info("indicator_registered", key=spec.key, values=len(self._hist[spec]))

    # ---------- read-only accessors ----------

    def history(self, spec: IndicatorSpec) -> tuple:
        hist = self._hist.get(spec)
        return tuple(hist) if hist is not None else ()

    def latest(self, spec: IndicatorSpec) -> Optional[IndicatorValue]:
        hist = self._hist.get(spec)
        return hist[-1] if hist else None
