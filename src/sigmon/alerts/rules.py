# src/sigmon/alerts/rules.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from sigmon.data.unified import INDICATOR_FIELDS
from sigmon.utils.errors import RuleError

Action = Literal["BUY", "SELL", "NEUTRAL"]
Combinator = Literal["AND", "OR"]

ACTIONS = ("BUY", "SELL", "NEUTRAL")
COMBINATORS = ("AND", "OR")


class Operator(str, Enum):
    GT = "GT"
    LT = "LT"
    GTE = "GTE"
    LTE = "LTE"
    EQ = "EQ"
    BETWEEN = "BETWEEN"
    CROSSES_ABOVE = "CROSSES_ABOVE"
    CROSSES_BELOW = "CROSSES_BELOW"
    CROSSES_ABOVE_IND = "CROSSES_ABOVE_IND"
    CROSSES_BELOW_IND = "CROSSES_BELOW_IND"
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    FLAT = "FLAT"

    @classmethod
    def parse(cls, raw: Any) -> "Operator":
        """Accepts the operator name ('GT') or its symbol ('>')."""
        s = str(raw or "").strip()
        s = _SYMBOLS.get(s, s).upper()
        try:
            return cls(s)
        except ValueError:
            raise RuleError(f"unknown operator: {raw!r}") from None

    @property
    def needs_value(self) -> bool:
        return self in _NEEDS_VALUE

    @property
    def needs_range(self) -> bool:
        return self is Operator.BETWEEN

    @property
    def needs_indicator(self) -> bool:
        return self in (Operator.CROSSES_ABOVE_IND, Operator.CROSSES_BELOW_IND)


_SYMBOLS = {">": "GT", "<": "LT", ">=": "GTE", "<=": "LTE", "=": "EQ", "==": "EQ"}

_NEEDS_VALUE = frozenset({
    Operator.GT, Operator.LT, Operator.GTE, Operator.LTE, Operator.EQ,
    Operator.CROSSES_ABOVE, Operator.CROSSES_BELOW,
})


@dataclass(frozen=True, slots=True)
class Condition:
    indicator_key: str
    operator: Operator
    value: Optional[float] = None
    value_from: Optional[float] = None
    value_to: Optional[float] = None
    compare_to: Optional[str] = None
    lookback: int = 1
    id: Optional[str] = None

    def describe(self) -> str:
        """Human-readable form used in alert text, e.g. 'RSI < 30'."""
        op = self.operator
        if op.needs_range:
            return f"{self.indicator_key} BETWEEN {self.value_from:g} and {self.value_to:g}"
        if op.needs_indicator:
            return f"{self.indicator_key} {op.value} {self.compare_to}"
        if op in (Operator.INCREASING, Operator.DECREASING, Operator.FLAT):
            return f"{self.indicator_key} {op.value} (lookback {self.lookback})"
        sym = {v: k for k, v in _SYMBOLS.items() if k != "=="}.get(op.value, op.value)
        return f"{self.indicator_key} {sym} {self.value:g}"


@dataclass(frozen=True, slots=True)
class Rule:
    id: str
    name: str
    action: Action
    conditions: tuple[Condition, ...]
    combinator: Combinator = "AND"
    enabled: bool = True
    owner: Optional[str] = None
    owner_id: Optional[Any] = field(default=None, compare=False)


# ---------- parsing (DB rows: snake_case, JSON payloads: camelCase) ----------

def _pick(row: Mapping, *names: str, default=None):
    for n in names:
        if n in row and row[n] is not None:
            return row[n]
    return default


def _num(v, what: str) -> Optional[float]:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        raise RuleError(f"{what} is not a number: {v!r}") from None


def _indicator_key(v, what: str) -> str:
    key = str(v or "").strip().upper()
    if key not in INDICATOR_FIELDS:
        raise RuleError(f"{what}: unknown indicator {v!r}")
    return key


def condition_from_row(row: Mapping) -> Condition:
    op = Operator.parse(_pick(row, "operator", "op"))
    key = _indicator_key(_pick(row, "indicator_key", "indicatorKey", "indicator"), "indicator_key")
    value = _num(_pick(row, "value"), "value")
    value_from = _num(_pick(row, "value_from", "valueFrom"), "value_from")
    value_to = _num(_pick(row, "value_to", "valueTo"), "value_to")
    compare_to = _pick(row, "compare_to_indicator", "compareToIndicator", "compare_to")

    try:
        lookback = int(_pick(row, "lookback", default=1))
    except (TypeError, ValueError):
        raise RuleError(f"lookback is not an integer: {row.get('lookback')!r}") from None
    if lookback < 1:
        raise RuleError(f"lookback must be >= 1, got {lookback}")

    if op.needs_value and value is None:
        raise RuleError(f"{op.value} requires a value")
    if op.needs_range and (value_from is None or value_to is None):
        raise RuleError("BETWEEN requires value_from and value_to")
    if op.needs_indicator:
        if not compare_to:
            raise RuleError(f"{op.value} requires a comparison indicator")
        compare_to = _indicator_key(compare_to, "compare_to_indicator")
    else:
        compare_to = None

    cid = _pick(row, "id")
    return Condition(
        indicator_key=key,
        operator=op,
        value=value,
        value_from=value_from,
        value_to=value_to,
        compare_to=compare_to,
        lookback=lookback,
        id=None if cid is None else str(cid),
    )


def rule_from_row(row: Mapping, conditions: Optional[list] = None) -> Rule:
    """
    Build a Rule from a store row. `conditions` overrides row['conditions'].
    Raises RuleError for anything that cannot be evaluated.
    """
    rid = _pick(row, "id")
    if rid is None:
        raise RuleError("rule without id")
    action = str(_pick(row, "action", default="")).upper()
    if action not in ACTIONS:
        raise RuleError(f"rule {rid}: invalid action {action!r}")
    combinator = str(_pick(row, "logic", "combinator", default="AND")).upper()
    if combinator not in COMBINATORS:
        raise RuleError(f"rule {rid}: invalid logic {combinator!r}")

    raw_conds = conditions if conditions is not None else _pick(row, "conditions", default=[])
    if not raw_conds:
        raise RuleError(f"rule {rid}: no conditions")
    conds = []
    for i, c in enumerate(raw_conds):
        try:
            conds.append(condition_from_row(c))
        except RuleError as e:
            raise RuleError(f"rule {rid} condition {i + 1}: {e}") from e

    return Rule(
        id=str(rid),
        name=str(_pick(row, "name", default=rid)),
        action=action,  # type: ignore[arg-type]
        conditions=tuple(conds),
        combinator=combinator,  # type: ignore[arg-type]
        enabled=bool(_pick(row, "enabled", default=True)),
        owner=_pick(row, "username", "owner", "userName"),
        owner_id=_pick(row, "user_id", "userId"),
    )
