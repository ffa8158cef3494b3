import pytest

from sigmon.alerts.dispatcher import AlertDispatcher
from sigmon.alerts.notifiers import MemoryNotifier
from sigmon.alerts.rules import rule_from_row
from sigmon.alerts.store import RuleCache, StaticRuleStore
from sigmon.indicators.engine import IndicatorsConfig
from sigmon.pipeline import SymbolPipeline, _event_section
from sigmon.utils.types import PricePoint, Tick

SYM = "XAU/USD"
T0 = 1699999980  # multiple of 60


def _rules(*rows):
    return RuleCache(StaticRuleStore([rule_from_row(r) for r in rows]))


def _pipeline(rules=None, sink=None):
    sink = sink or MemoryNotifier()
    return SymbolPipeline(
        SYM,
        capacity=100,
        granularity_s=60,
        indicators=IndicatorsConfig(rsi_period=3, macd=(2, 3, 2), stochastic=(3, 2, 2),
                                    bollinger=(3, 2.0), max_history=100),
        rules=rules,
        dispatcher=AlertDispatcher([sink]),
    ), sink


def _tick(i, price, offset=0):
    return Tick(symbol=SYM, price=float(price), ts=float(T0 + 60 * i + offset))


ABOVE_100 = {"id": "above", "name": "Above 100", "action": "SELL",
             "conditions": [{"indicator_key": "PRICE", "operator": "GT", "value": 100}]}


@pytest.mark.asyncio
async def test_ticks_and_indicator_sets_fan_out():
    p, _ = _pipeline()
    ticks, sets = [], []
    p.ticks.subscribe(ticks.append)
    p.indicator_sets.subscribe(sets.append)

    for i, px in enumerate([10, 11, 12, 11, 13]):
        await p.on_tick(_tick(i, px))

    assert [t["price"] for t in ticks] == [10, 11, 12, 11, 13]
    assert all(t["type"] == "tick" and t["symbol"] == SYM for t in ticks)
    # bollinger(3) is the first to warm up, rsi(3) needs 4 points
    assert "bollinger" in sets[0] and "rsi" not in sets[0]
    assert set(sets[-1]) >= {"type", "symbol", "ts", "rsi", "macd", "stochastic", "bollinger"}
    assert set(sets[-1]["macd"]) == {"macd", "signal", "histogram"}


@pytest.mark.asyncio
async def test_live_rule_notifies_once_per_point():
    p, sink = _pipeline(_rules(ABOVE_100))
    await p.on_tick(_tick(0, 99))
    assert sink.sent == []

    await p.on_tick(_tick(1, 101))
    assert len(sink.sent) == 1
    assert "Rule: Above 100" in sink.sent[0]

    # re-delivered tick after a reconnect: rejected by the buffer
    assert await p.on_tick(_tick(1, 101)) == []
    # later tick in the same bucket evaluates the same point again
    signals = await p.on_tick(_tick(1, 102, offset=30))
    assert len(signals) == 1
    assert len(sink.sent) == 1
    assert p.ticks_rejected == 1

    await p.on_tick(_tick(2, 103))
    assert len(sink.sent) == 2


@pytest.mark.asyncio
async def test_history_load_publishes_signals_without_notifying():
    p, sink = _pipeline(_rules(ABOVE_100))
    events = []
    p.signals.subscribe(events.append)

    bars = [PricePoint(ts=float(T0 + 60 * i), price=px) for i, px in enumerate([99, 101, 100, 102])]
    signals = await p.load_history(bars)

    assert [s.ts for s in signals] == [T0 + 60, T0 + 180]
    assert sink.sent == []
    assert events[0]["type"] == "signals" and len(events[0]["signals"]) == 2
    assert events[0]["signals"][0]["rule_id"] == "above"
    assert events[0]["signals"][0]["time"] == "2023-11-14T22:14:00Z"
    assert len(p.buffer) == 4
    assert "rsi_3" in p.latest_indicators()


@pytest.mark.asyncio
async def test_history_then_live_matches_full_batch():
    closes = [100 + (i % 5) - (i % 3) for i in range(30)]
    bars = [PricePoint(ts=float(T0 + 60 * i), price=float(c)) for i, c in enumerate(closes)]

    live, _ = _pipeline()
    await live.load_history(bars[:20])
    for b in bars[20:]:
        await live.on_tick(Tick(symbol=SYM, price=b.price, ts=b.ts))

    full, _ = _pipeline()
    await full.load_history(bars)

    for spec in live.engine.specs:
        assert live.engine.history(spec) == full.engine.history(spec)
    assert [u.to_dict() for u in live.unified_series()] == [u.to_dict() for u in full.unified_series()]


@pytest.mark.asyncio
async def test_oversold_rule_fires_at_t_not_before():
    rule = {"id": "oversold", "name": "Oversold", "action": "BUY",
            "conditions": [{"indicator_key": "RSI", "operator": "LT", "value": 30},
                           {"indicator_key": "STOCH_K", "operator": "LT", "value": 20}]}
    p, sink = _pipeline(_rules(rule))
    # flat, then a sharp sell-off
    for i, px in enumerate([100, 100, 100, 100, 100, 100, 90, 80]):
        await p.on_tick(_tick(i, px))
    series = p.unified_series()
    assert series[-1].rsi < 30 and series[-1].k < 20
    assert len(sink.sent) == 1
    assert "Action: 🟢 BUY" in sink.sent[-1]


@pytest.mark.asyncio
async def test_broken_subscriber_does_not_stop_pipeline():
    p, _ = _pipeline()
    good = []

    def broken(evt):
        raise ValueError("socket closed")

    p.ticks.subscribe(broken)
    p.ticks.subscribe(good.append)
    await p.on_tick(_tick(0, 1))
    await p.on_tick(_tick(1, 2))
    assert len(good) == 2
    assert len(p.ticks) == 1


def test_event_section_rejects_unknown_values():
    with pytest.raises(TypeError):
        _event_section(object())


@pytest.mark.asyncio
async def test_builtin_signals_published_not_notified():
    p, sink = _pipeline(_rules(ABOVE_100))
    events = []
    p.signals.subscribe(events.append)

    # steady fall pins %K/%D at 0, then a small up-tick crosses %K over %D
    for i, px in enumerate([100, 99, 98, 97, 96, 95, 95.2]):
        await p.on_tick(_tick(i, px))

    builtin = [e for e in events if e["type"] == "builtin_signals"]
    assert len(builtin) == 2
    assert builtin[0]["status"]["confirmation_signal"] == "BUY"
    assert builtin[0]["status"]["stochastic_signal"] is None
    last = builtin[-1]["status"]
    assert last["stochastic_signal"] == "BUY" and last["confirmation_signal"] == "BUY"
    assert last["ts"] == T0 + 360
    assert p.builtin_status().stochastic_signal == "BUY"
    assert sink.sent == []


@pytest.mark.asyncio
async def test_history_load_publishes_builtin_history():
    p, _ = _pipeline()
    events = []
    p.signals.subscribe(events.append)
    bars = [PricePoint(ts=float(T0 + 60 * i), price=px)
            for i, px in enumerate([100, 99, 98, 97, 96, 95, 95.2])]
    await p.load_history(bars)

    assert [e["type"] for e in events] == ["signals", "builtin_signals"]
    hist = events[1]["history"]
    assert hist[0] == {"type": "BUY", "ts": T0 + 360, "time": "2023-11-14T22:19:00Z",
                       "reason": "%K↑%D under 20", "source": "stochastic"}
    assert hist[1]["source"] == "confirm" and hist[1]["ts"] == T0 + 300
