import pytest

from sigmon.alerts.evaluator import (
    evaluate_all_for_all_points,
    evaluate_all_rules,
    evaluate_condition,
    evaluate_rule,
)
from sigmon.alerts.rules import Condition, Operator, Rule
from sigmon.data.unified import UnifiedDataPoint


def C(key, op, **kw):
    return Condition(indicator_key=key, operator=Operator(op), **kw)


def R(*conds, combinator="AND", rid="r1", action="BUY", enabled=True):
    return Rule(id=rid, name=rid, action=action, conditions=tuple(conds),
                combinator=combinator, enabled=enabled)


def S(*rows):
    return [UnifiedDataPoint(ts=60 * i, **row) for i, row in enumerate(rows)]


# ---------- single conditions ----------

@pytest.mark.parametrize("op,value,cur,expected", [
    ("GT", 30, 31, True), ("GT", 30, 30, False),
    ("LT", 30, 29, True), ("LT", 30, 30, False),
    ("GTE", 30, 30, True), ("LTE", 30, 30, True), ("LTE", 30, 30.1, False),
    ("EQ", 30, 30.00005, True), ("EQ", 30, 30.001, False),
])
def test_literal_comparisons(op, value, cur, expected):
    series = S({"rsi": cur})
    assert evaluate_condition(C("RSI", op, value=value), series, 0) is expected


def test_between_inclusive():
    cond = C("PRICE", "BETWEEN", value_from=10, value_to=20)
    assert evaluate_condition(cond, S({"price": 10}), 0)
    assert evaluate_condition(cond, S({"price": 20}), 0)
    assert not evaluate_condition(cond, S({"price": 20.01}), 0)


def test_crosses_literal():
    series = S({"rsi": 29}, {"rsi": 31}, {"rsi": 30}, {"rsi": 29})
    up = C("RSI", "CROSSES_ABOVE", value=30)
    down = C("RSI", "CROSSES_BELOW", value=30)
    assert [evaluate_condition(up, series, i) for i in range(4)] == [False, True, False, False]
    assert [evaluate_condition(down, series, i) for i in range(4)] == [False, False, False, True]


def test_crosses_indicator_vs_indicator():
    series = S(
        {"macd": -1.0, "signal": 0.0},
        {"macd": 0.5, "signal": 0.0},
        {"macd": 0.2, "signal": 0.3},
    )
    up = C("MACD", "CROSSES_ABOVE_IND", compare_to="MACD_SIGNAL")
    down = C("MACD", "CROSSES_BELOW_IND", compare_to="MACD_SIGNAL")
    assert [evaluate_condition(up, series, i) for i in range(3)] == [False, True, False]
    assert [evaluate_condition(down, series, i) for i in range(3)] == [False, False, True]


def test_trend_operators_with_lookback():
    series = S({"price": 100}, {"price": 99}, {"price": 105}, {"price": 100.5})
    assert evaluate_condition(C("PRICE", "INCREASING", lookback=1), series, 2)
    assert not evaluate_condition(C("PRICE", "INCREASING", lookback=2), series, 1)   # not enough history
    assert evaluate_condition(C("PRICE", "DECREASING", lookback=1), series, 3)
    assert evaluate_condition(C("PRICE", "FLAT", lookback=3), series, 3)             # |0.5| < 1.005
    assert not evaluate_condition(C("PRICE", "FLAT", lookback=1), series, 3)


def test_missing_data_is_not_triggered():
    series = S({"price": 1.0}, {"price": 2.0})
    assert not evaluate_condition(C("RSI", "GT", value=0), series, 1)
    assert not evaluate_condition(C("PRICE", "GT", value=0), series, 5)
    assert not evaluate_condition(C("PRICE", "GT", value=0), series, -1)
    assert not evaluate_condition(C("PRICE", "CROSSES_ABOVE_IND", compare_to="BB_UPPER"), series, 1)


# ---------- rule combinators ----------

def test_and_with_one_false_matches_nothing():
    series = S({"rsi": 25, "k": 50})
    ev = evaluate_rule(R(C("RSI", "LT", value=30), C("STOCH_K", "LT", value=20)), series, 0)
    assert ev.triggered is False
    assert ev.matched == []


def test_or_records_matching_subset():
    a, b, c = C("RSI", "LT", value=30), C("STOCH_K", "LT", value=20), C("PRICE", "GT", value=0)
    ev = evaluate_rule(R(a, b, c, combinator="OR"), S({"rsi": 25, "k": 50, "price": 1}), 0)
    assert ev.triggered
    assert ev.matched == [a, c]


def test_disabled_rule_never_triggers():
    ev = evaluate_rule(R(C("PRICE", "GT", value=0), enabled=False), S({"price": 1}), 0)
    assert not ev.triggered


def test_oversold_rule_triggers_exactly_at_t():
    series = S({"rsi": 32, "k": 25}, {"rsi": 28, "k": 15})
    rule = R(C("RSI", "LT", value=30), C("STOCH_K", "LT", value=20))
    assert not evaluate_rule(rule, series, 0).triggered
    assert evaluate_rule(rule, series, 1).triggered

    signals = evaluate_all_for_all_points([rule], series)
    assert [s.ts for s in signals] == [60]
    assert signals[0].action == "BUY"
    assert len(signals[0].matched_conditions) == 2


def test_evaluate_all_rules_latest_index_only():
    series = S({"price": 5}, {"price": 1})
    rule = R(C("PRICE", "GT", value=2))
    assert evaluate_all_rules([rule], series) == []
    assert len(evaluate_all_for_all_points([rule], series)) == 1
    assert evaluate_all_rules([rule], []) == []


def test_broken_rule_does_not_block_others():
    broken = R(C("PRICE", "GT"), rid="broken")          # value None -> TypeError inside comparison
    ok = R(C("PRICE", "GT", value=0), rid="ok")
    signals = evaluate_all_rules([broken, ok], S({"price": 1}))
    assert [s.rule.id for s in signals] == ["ok"]
