from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import structlog

from sigmon.alerts.builtin_signals import SignalStatus, analyze_latest_signals, build_signal_history
from sigmon.alerts.dispatcher import AlertDispatcher
from sigmon.alerts.evaluator import TriggeredSignal, evaluate_all_for_all_points, evaluate_all_rules
from sigmon.alerts.store import RuleCache
from sigmon.data.fanout import SubscriberRegistry
from sigmon.data.price_buffer import PriceBuffer
from sigmon.data.unified import UnifiedDataPoint, build_unified_series
from sigmon.indicators.engine import IndicatorEngine, IndicatorsConfig
from sigmon.utils.types import (
    BollingerValue,
    BuiltinSignalEvent,
    IndicatorEvent,
    IndicatorSpec,
    IndicatorValue,
    MACDValue,
    PricePoint,
    RSIValue,
    SignalEvent,
    SignalHistoryEvent,
    StochasticValue,
    Tick,
    TickEvent,
)

log = structlog.get_logger("pipeline")


def _event_section(val: IndicatorValue) -> tuple[str, dict]:
    if isinstance(val, RSIValue):
        return "rsi", {"rsi": val.rsi}
    if isinstance(val, MACDValue):
        return "macd", {"macd": val.macd, "signal": val.signal, "histogram": val.histogram}
    if isinstance(val, StochasticValue):
        return "stochastic", {"k": val.k, "d": val.d}
    if isinstance(val, BollingerValue):
        return "bollinger", {"upper": val.upper, "middle": val.middle, "lower": val.lower}
    raise TypeError(f"not an indicator value: {type(val).__name__}")


class SymbolPipeline:
    """
    Everything derived from one symbol's feed: the price buffer, the indicator
    cache and the fan-out registries (ticks, indicator sets, signals).

    on_tick() runs append -> indicators -> fan-out -> unified series ->
    built-in signal status -> rules -> dispatch for one tick before returning;
    the feed awaits it, so ticks are processed strictly in arrival order.
    """

    def __init__(
        self,
        symbol: str,
        *,
        capacity: int = 2000,
        granularity_s: int = 60,
        indicators: Optional[IndicatorsConfig] = None,
        rules: Optional[RuleCache] = None,
        dispatcher: Optional[AlertDispatcher] = None,
    ):
        self.symbol = symbol
        self.granularity_s = int(granularity_s)
        self.buffer = PriceBuffer(capacity)
        cfg = indicators or IndicatorsConfig(max_history=capacity)
        self.engine = IndicatorEngine(cfg)
        self.rules = rules
        self.dispatcher = dispatcher
        self.ticks: SubscriberRegistry[TickEvent] = SubscriberRegistry(f"{symbol}:ticks")
        self.indicator_sets: SubscriberRegistry[IndicatorEvent] = SubscriberRegistry(f"{symbol}:indicators")
        self.signals: SubscriberRegistry[SignalEvent] = SubscriberRegistry(f"{symbol}:signals")
        self.ticks_accepted = 0
        self.ticks_rejected = 0
        self._builtin_key: Optional[tuple] = None

    # ---------- live path ----------

    async def on_tick(self, tick: Tick) -> List[TriggeredSignal]:
        point = PricePoint.from_tick(tick)
        if not self.buffer.append(point):
            self.ticks_rejected += 1
            log.debug("tick_rejected_out_of_order", symbol=self.symbol, ts=point.ts,
                      last_ts=self.buffer.last_ts())
            return []
        self.ticks_accepted += 1

        values = self.engine.update(point)

        self.ticks.publish(TickEvent(type="tick", symbol=self.symbol, price=point.price, ts=point.ts))
        if values:
            self.indicator_sets.publish(self._indicator_event(point.ts, values))

        series = self.unified_series()
        self._publish_builtin_status(analyze_latest_signals(series))

        if self.rules is None:
            return []
        rules = await self.rules.get()
        if not rules:
            return []
        signals = evaluate_all_rules(rules, series)
        if signals and self.dispatcher is not None:
            await self.dispatcher.dispatch(signals, point.price)
        return signals

    def _publish_builtin_status(self, status: SignalStatus) -> None:
        # once per (point, outcome); ticks inside a bucket repeat the same status
        key = (status.ts, status.stochastic_signal, status.confirmation_signal)
        if not status.active or key == self._builtin_key:
            return
        self._builtin_key = key
        self.signals.publish(BuiltinSignalEvent(
            type="builtin_signals", symbol=self.symbol, status=status.to_dict(),
        ))

    def _indicator_event(self, ts: float, values: Dict[IndicatorSpec, IndicatorValue]) -> IndicatorEvent:
        evt = IndicatorEvent(type="indicators", symbol=self.symbol, ts=ts)
        for spec in self.engine.specs:
            val = values.get(spec)
            if val is None:
                continue
            name, body = _event_section(val)
            if name not in evt:  # first spec of a kind is the published one
                evt[name] = body  # type: ignore[literal-required]
        return evt

    # ---------- backfill path ----------

    async def load_history(self, points: Sequence[PricePoint]) -> List[TriggeredSignal]:
        """
        Append historical bars, rebuild indicator histories in batch mode and
        evaluate every point. Historical signals are published, not notified.
        """
        accepted = sum(1 for p in points if self.buffer.append(p))
        self.engine.seed(self.buffer.snapshot())
        log.info("history_loaded", symbol=self.symbol, bars=len(points), accepted=accepted,
                 buffered=len(self.buffer))

        series = self.unified_series()
        signals: List[TriggeredSignal] = []
        if self.rules is not None:
            rules = await self.rules.get()
            if rules:
                signals = evaluate_all_for_all_points(rules, series)
        self.signals.publish(SignalHistoryEvent(
            type="signals", symbol=self.symbol, signals=[s.to_dict() for s in signals],
        ))

        status = analyze_latest_signals(series)
        history = build_signal_history(series)
        self._builtin_key = (status.ts, status.stochastic_signal, status.confirmation_signal)
        self.signals.publish(BuiltinSignalEvent(
            type="builtin_signals", symbol=self.symbol, status=status.to_dict(),
            history=[s.to_dict() for s in history],
        ))
        log.info("history_signals", symbol=self.symbol, count=len(signals), builtin=len(history))
        return signals

    # ---------- read-only accessors ----------

    def _default(self, kind: str) -> tuple:
        spec = self.engine.spec_for(kind)
        return self.engine.history(spec) if spec is not None else ()

    def unified_series(self) -> List[UnifiedDataPoint]:
        return build_unified_series(
            self.buffer.snapshot(),
            rsi=self._default("rsi"),
            macd=self._default("macd"),
            stochastic=self._default("stochastic"),
            bollinger=self._default("bollinger"),
            granularity_s=self.granularity_s,
        )

    def builtin_status(self) -> SignalStatus:
        return analyze_latest_signals(self.unified_series())

    def latest_indicators(self) -> Dict[str, IndicatorValue]:
        out: Dict[str, IndicatorValue] = {}
        for spec in self.engine.specs:
            val = self.engine.latest(spec)
            if val is not None:
                out[spec.key] = val
        return out
