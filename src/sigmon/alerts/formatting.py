from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo

from sigmon.alerts.evaluator import TriggeredSignal

_ACTION_ICON = {"BUY": "🟢", "SELL": "🔴", "NEUTRAL": "⚪"}

def _fmt_ts(ts_s: int, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_s, tz).isoformat()  # e.g., 2024-02-01T14:32:00+00:00

def _fmt_price(price: float | None) -> str:
    if price is None:
        return "n/a"
    return f"{price:,.2f}"

def format_signal_message(sig: TriggeredSignal, price: float | None, tz_name: str = "UTC") -> str:
    rule = sig.rule
    icon = _ACTION_ICON.get(sig.action, "")
    lines = [
        "🚨 Trading Rule Triggered",
        "",
        f"Rule: {rule.name}",
        "Action: " + " ".join(x for x in (icon, sig.action) if x),
        f"User: {rule.owner or 'unknown'}",
        f"Price: {_fmt_price(price)}",
        f"Time: {_fmt_ts(sig.ts, tz_name)}",
    ]
    if sig.matched_conditions:
        lines.append("")
        lines.append("Matched Conditions:")
        for i, c in enumerate(sig.matched_conditions, start=1):
            lines.append(f"{i}. {c.describe()}")
    return "\n".join(lines)
