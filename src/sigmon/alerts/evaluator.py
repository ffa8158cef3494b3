from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

import structlog

from sigmon.alerts.rules import Condition, Operator, Rule
from sigmon.data.unified import UnifiedDataPoint
from sigmon.utils.time import iso_utc

log = structlog.get_logger("rules")

EQ_TOLERANCE = 1e-4
FLAT_FRACTION = 0.01


@dataclass(slots=True)
class RuleEvaluation:
    triggered: bool
    matched: List[Condition] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TriggeredSignal:
    rule: Rule
    ts: int
    matched_conditions: tuple[Condition, ...]
    action: str
    index: int = -1

    @property
    def key(self) -> tuple[str, int]:
        return (self.rule.id, self.ts)

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule.id,
            "rule_name": self.rule.name,
            "ts": self.ts,
            "time": iso_utc(self.ts),
            "action": self.action,
            "matched": [c.describe() for c in self.matched_conditions],
        }


def evaluate_condition(cond: Condition, series: Sequence[UnifiedDataPoint], index: int) -> bool:
    """
    Truth of one condition at series[index]. Missing data means "not triggered";
    this never raises for absent values or out-of-range indexes.
    """
    if index < 0 or index >= len(series):
        return False
    cur = series[index].get(cond.indicator_key)
    if cur is None:
        return False

    op = cond.operator

    # ---------- literal comparisons ----------
    if op is Operator.GT:
        return cur > cond.value
    if op is Operator.LT:
        return cur < cond.value
    if op is Operator.GTE:
        return cur >= cond.value
    if op is Operator.LTE:
        return cur <= cond.value
    if op is Operator.EQ:
        return abs(cur - cond.value) < EQ_TOLERANCE
    if op is Operator.BETWEEN:
        return cond.value_from <= cur <= cond.value_to

    # ---------- crossovers (index-1 -> index) ----------
    if op in (Operator.CROSSES_ABOVE, Operator.CROSSES_BELOW):
        if index < 1:
            return False
        prev = series[index - 1].get(cond.indicator_key)
        if prev is None:
            return False
        if op is Operator.CROSSES_ABOVE:
            return prev <= cond.value < cur
        return prev >= cond.value > cur

    if op in (Operator.CROSSES_ABOVE_IND, Operator.CROSSES_BELOW_IND):
        if index < 1 or not cond.compare_to:
            return False
        prev = series[index - 1].get(cond.indicator_key)
        cur_other = series[index].get(cond.compare_to)
        prev_other = series[index - 1].get(cond.compare_to)
        if prev is None or cur_other is None or prev_other is None:
            return False
        if op is Operator.CROSSES_ABOVE_IND:
            return prev - prev_other <= 0 < cur - cur_other
        return prev - prev_other >= 0 > cur - cur_other

    # ---------- trend over lookback ----------
    if index < cond.lookback:
        return False
    past = series[index - cond.lookback].get(cond.indicator_key)
    if past is None:
        return False
    if op is Operator.INCREASING:
        return cur > past
    if op is Operator.DECREASING:
        return cur < past
    if op is Operator.FLAT:
        return abs(cur - past) < abs(cur * FLAT_FRACTION)

    log.warning("unknown_operator", operator=str(op))
    return False


def evaluate_rule(rule: Rule, series: Sequence[UnifiedDataPoint], index: int) -> RuleEvaluation:
    """
    AND: every condition true at the same index; matches recorded only on full success.
    OR:  at least one true; matches are exactly the true subset.
    """
    if not rule.enabled or not rule.conditions:
        return RuleEvaluation(False)

    if rule.combinator == "OR":
        matched = [c for c in rule.conditions if evaluate_condition(c, series, index)]
        return RuleEvaluation(bool(matched), matched)

    for c in rule.conditions:
        if not evaluate_condition(c, series, index):
            return RuleEvaluation(False)
    return RuleEvaluation(True, list(rule.conditions))


def _signals_at(rules: Iterable[Rule], series: Sequence[UnifiedDataPoint], index: int) -> List[TriggeredSignal]:
    out: List[TriggeredSignal] = []
    for rule in rules:
        if not rule.enabled:
            continue
        try:
            ev = evaluate_rule(rule, series, index)
        except Exception as e:
            # one bad rule must not block the others
            log.warning("rule_eval_failed", rule_id=rule.id, index=index, err=str(e))
            continue
        if ev.triggered:
            out.append(TriggeredSignal(
                rule=rule,
                ts=series[index].ts,
                matched_conditions=tuple(ev.matched),
                action=rule.action,
                index=index,
            ))
    return out


def evaluate_all_rules(rules: Iterable[Rule], series: Sequence[UnifiedDataPoint]) -> List[TriggeredSignal]:
    """Live-tick mode: latest index only."""
    if not series:
        return []
    return _signals_at(rules, series, len(series) - 1)


def evaluate_all_for_all_points(rules: Iterable[Rule], series: Sequence[UnifiedDataPoint]) -> List[TriggeredSignal]:
    """Backfill mode: every index for every enabled rule."""
    rules = [r for r in rules if r.enabled]
    out: List[TriggeredSignal] = []
    if not rules:
        return out
    for i in range(len(series)):
        out.extend(_signals_at(rules, series, i))
    return out

