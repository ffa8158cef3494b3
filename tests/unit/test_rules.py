import pytest

from sigmon.alerts.rules import Operator, condition_from_row, rule_from_row
from sigmon.utils.errors import RuleError


def test_operator_accepts_names_and_symbols():
    assert Operator.parse(">") is Operator.GT
    assert Operator.parse("<=") is Operator.LTE
    assert Operator.parse("=") is Operator.EQ
    assert Operator.parse("crosses_above") is Operator.CROSSES_ABOVE
    with pytest.raises(RuleError):
        Operator.parse("~")


def test_rule_from_db_row():
    row = {
        "id": "rule_1", "user_id": 7, "username": "alice", "name": "Oversold",
        "enabled": True, "action": "BUY", "logic": "AND",
        "conditions": [
            {"id": "c1", "indicator_key": "RSI", "operator": "LT", "value": "30", "lookback": 1},
            {"id": "c2", "indicator_key": "STOCH_K", "operator": "LT", "value": 20, "lookback": None},
        ],
    }
    rule = rule_from_row(row)
    assert rule.id == "rule_1" and rule.owner == "alice" and rule.owner_id == 7
    assert rule.combinator == "AND" and rule.action == "BUY"
    assert [c.indicator_key for c in rule.conditions] == ["RSI", "STOCH_K"]
    assert rule.conditions[0].value == 30.0
    assert rule.conditions[1].lookback == 1


def test_rule_from_camel_case_payload():
    rule = rule_from_row({
        "id": "r2", "name": "MACD cross", "action": "sell", "logic": "or",
        "conditions": [
            {"indicatorKey": "MACD", "operator": "CROSSES_BELOW_IND", "compareToIndicator": "MACD_SIGNAL"},
            {"indicatorKey": "PRICE", "operator": "BETWEEN", "valueFrom": 1, "valueTo": 2},
        ],
    })
    assert rule.action == "SELL" and rule.combinator == "OR"
    assert rule.conditions[0].compare_to == "MACD_SIGNAL"
    assert (rule.conditions[1].value_from, rule.conditions[1].value_to) == (1.0, 2.0)


@pytest.mark.parametrize("cond", [
    {"indicator_key": "RSI", "operator": "GT"},                          # missing value
    {"indicator_key": "RSI", "operator": "BETWEEN", "value_from": 1},    # missing upper bound
    {"indicator_key": "MACD", "operator": "CROSSES_ABOVE_IND"},          # missing comparison
    {"indicator_key": "VWAP", "operator": "GT", "value": 1},             # unknown indicator
    {"indicator_key": "RSI", "operator": "INCREASING", "lookback": 0},   # lookback < 1
    {"indicator_key": "RSI", "operator": "GT", "value": "abc"},
])
def test_malformed_condition_rejected(cond):
    with pytest.raises(RuleError):
        condition_from_row(cond)


@pytest.mark.parametrize("row", [
    {"id": "r", "action": "HOLD", "conditions": [{"indicator_key": "RSI", "operator": "GT", "value": 1}]},
    {"id": "r", "action": "BUY", "logic": "XOR", "conditions": [{"indicator_key": "RSI", "operator": "GT", "value": 1}]},
    {"id": "r", "action": "BUY", "conditions": []},
    {"action": "BUY", "conditions": [{"indicator_key": "RSI", "operator": "GT", "value": 1}]},
])
def test_malformed_rule_rejected(row):
    with pytest.raises(RuleError):
        rule_from_row(row)


def test_condition_describe():
    assert condition_from_row({"indicator_key": "RSI", "operator": "LT", "value": 30}).describe() == "RSI < 30"
    assert condition_from_row({"indicator_key": "RSI", "operator": "BETWEEN", "value_from": 40,
                               "value_to": 60}).describe() == "RSI BETWEEN 40 and 60"
    assert condition_from_row({"indicator_key": "MACD", "operator": "CROSSES_ABOVE_IND",
                               "compare_to_indicator": "MACD_SIGNAL"}).describe() == "MACD CROSSES_ABOVE_IND MACD_SIGNAL"
