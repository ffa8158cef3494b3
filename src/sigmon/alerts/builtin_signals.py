from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sigmon.data.unified import UnifiedDataPoint
from sigmon.utils.time import iso_utc

# ----------------------------
# Zone thresholds
# ----------------------------
STOCH_OVERSOLD = 20.0
STOCH_OVERBOUGHT = 80.0
RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0

RSI_MATCH_TOLERANCE_S = 120


@dataclass(frozen=True, slots=True)
class BuiltinSignal:
    action: str      # BUY | SELL
    ts: int
    reason: str
    source: str      # stochastic | confirm

    def to_dict(self) -> dict:
        return {"type": self.action, "ts": self.ts, "time": iso_utc(self.ts),
                "reason": self.reason, "source": self.source}


@dataclass(slots=True)
class SignalStatus:
    stochastic_signal: Optional[str] = None
    stochastic_reason: str = "No stochastic crossover signal"
    confirmation_signal: Optional[str] = None
    confirmation_reason: str = "No strong confirmation"
    k: Optional[float] = None
    d: Optional[float] = None
    rsi: Optional[float] = None
    ts: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.stochastic_signal is not None or self.confirmation_signal is not None

    def to_dict(self) -> dict:
        return {
            "ts": self.ts,
            "stochastic_signal": self.stochastic_signal,
            "stochastic_reason": self.stochastic_reason,
            "confirmation_signal": self.confirmation_signal,
            "confirmation_reason": self.confirmation_reason,
            "k": self.k,
            "d": self.d,
            "rsi": self.rsi,
        }


# ---------- primitives ----------

def is_bullish_crossover(prev_k: float, prev_d: float, k: float, d: float) -> bool:
    return prev_k <= prev_d and k > d


def is_bearish_crossover(prev_k: float, prev_d: float, k: float, d: float) -> bool:
    return prev_k >= prev_d and k < d


def is_oversold_strict(k: float, d: float) -> bool:
    return k < STOCH_OVERSOLD and d < STOCH_OVERSOLD


def is_overbought_strict(k: float, d: float) -> bool:
    return k > STOCH_OVERBOUGHT and d > STOCH_OVERBOUGHT


def _kd(p: Optional[UnifiedDataPoint]) -> Optional[tuple[float, float]]:
    if p is None:
        return None
    k, d = p.get("STOCH_K"), p.get("STOCH_D")
    if k is None or d is None:
        return None
    return k, d


def detect_stochastic_buy(prev: Optional[UnifiedDataPoint], cur: Optional[UnifiedDataPoint]) -> bool:
    """%K crosses up through %D with both lines under the oversold line."""
    a, b = _kd(prev), _kd(cur)
    if a is None or b is None:
        return False
    return is_bullish_crossover(*a, *b) and is_oversold_strict(*b)


def detect_stochastic_sell(prev: Optional[UnifiedDataPoint], cur: Optional[UnifiedDataPoint]) -> bool:
    """%K crosses down through %D with both lines over the overbought line."""
    a, b = _kd(prev), _kd(cur)
    if a is None or b is None:
        return False
    return is_bearish_crossover(*a, *b) and is_overbought_strict(*b)


def detect_confirm_buy(k: Optional[float], d: Optional[float], rsi: Optional[float]) -> bool:
    # either stochastic line in the zone is enough here
    if k is None or d is None or rsi is None:
        return False
    return (k < STOCH_OVERSOLD or d < STOCH_OVERSOLD) and rsi < RSI_OVERSOLD


def detect_confirm_sell(k: Optional[float], d: Optional[float], rsi: Optional[float]) -> bool:
    if k is None or d is None or rsi is None:
        return False
    return (k > STOCH_OVERBOUGHT or d > STOCH_OVERBOUGHT) and rsi > RSI_OVERBOUGHT


# ---------- series scans ----------

def _stochastic_points(series: Sequence[UnifiedDataPoint]) -> List[UnifiedDataPoint]:
    return [p for p in series if _kd(p) is not None]


def analyze_latest_signals(series: Sequence[UnifiedDataPoint]) -> SignalStatus:
    """Signal status from the last two points carrying %K/%D and the latest RSI."""
    status = SignalStatus()
    stoch = _stochastic_points(series)
    if len(stoch) < 2:
        return status

    prev, cur = stoch[-2], stoch[-1]
    status.k, status.d = _kd(cur)
    status.ts = cur.ts

    if detect_stochastic_buy(prev, cur):
        status.stochastic_signal = "BUY"
        status.stochastic_reason = "Stochastic: Bullish crossover in oversold → BUY"
    elif detect_stochastic_sell(prev, cur):
        status.stochastic_signal = "SELL"
        status.stochastic_reason = "Stochastic: Bearish crossover in overbought → SELL"

    rsi = next((p.get("RSI") for p in reversed(series) if p.get("RSI") is not None), None)
    if rsi is not None:
        status.rsi = rsi
        if detect_confirm_buy(status.k, status.d, rsi):
            status.confirmation_signal = "BUY"
            status.confirmation_reason = "RSI + Stochastic confirm OVERSOLD → Potential bullish reversal"
        elif detect_confirm_sell(status.k, status.d, rsi):
            status.confirmation_signal = "SELL"
            status.confirmation_reason = "RSI + Stochastic confirm OVERBOUGHT → Potential bearish correction"
    return status


def _closest_rsi(rsi_by_ts: Dict[int, float], ts: int, tolerance_s: float) -> Optional[float]:
    if ts in rsi_by_ts:
        return rsi_by_ts[ts]
    best, best_diff = None, float("inf")
    for t, v in rsi_by_ts.items():
        diff = abs(t - ts)
        if diff < best_diff and diff < tolerance_s:
            best, best_diff = v, diff
    return best


def build_signal_history(
    series: Sequence[UnifiedDataPoint],
    max_signals: int = 10,
    rsi_tolerance_s: float = RSI_MATCH_TOLERANCE_S,
) -> List[BuiltinSignal]:
    """
    Scan every consecutive pair of stochastic points for crossovers in the
    zones, plus RSI confirmations at points without a crossover. Most recent
    first, at most `max_signals`.
    """
    stoch = _stochastic_points(series)
    if len(stoch) < 2:
        return []
    rsi_by_ts = {p.ts: p.get("RSI") for p in series if p.get("RSI") is not None}

    out: List[BuiltinSignal] = []
    for prev, cur in zip(stoch, stoch[1:]):
        crossed = False
        if detect_stochastic_buy(prev, cur):
            out.append(BuiltinSignal("BUY", cur.ts, f"%K↑%D under {STOCH_OVERSOLD:g}", "stochastic"))
            crossed = True
        if detect_stochastic_sell(prev, cur):
            out.append(BuiltinSignal("SELL", cur.ts, f"%K↓%D over {STOCH_OVERBOUGHT:g}", "stochastic"))
            crossed = True
        if crossed:
            continue

        rsi = _closest_rsi(rsi_by_ts, cur.ts, rsi_tolerance_s)
        k, d = _kd(cur)
        if detect_confirm_buy(k, d, rsi):
            out.append(BuiltinSignal("BUY", cur.ts,
                                     f"Confirm: RSI<{RSI_OVERSOLD:g} + Stoch<{STOCH_OVERSOLD:g}", "confirm"))
        elif detect_confirm_sell(k, d, rsi):
            out.append(BuiltinSignal("SELL", cur.ts,
                                     f"Confirm: RSI>{RSI_OVERBOUGHT:g} + Stoch>{STOCH_OVERBOUGHT:g}", "confirm"))

    out.reverse()
    return out[:max(0, int(max_signals))]
