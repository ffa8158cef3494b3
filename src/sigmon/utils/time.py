from __future__ import annotations

import re
import time
from datetime import datetime, timezone

# --- fast, allocation-free time helpers ---

def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def iso_utc(ts: float | int) -> str:
    """Epoch seconds -> '2024-02-01T14:32:00Z'."""
    return utc_dt(ts).strftime("%Y-%m-%dT%H:%M:%SZ")

# --- feed timestamps ---

def to_epoch_s(ts) -> float | None:
    """
    Normalize a feed timestamp to epoch seconds.

    Accepts epoch seconds / ms / ns (int, float or numeric string) and ISO-8601
    strings (naive strings are taken as UTC). Returns None when unparseable.
    """
    if ts is None or isinstance(ts, bool):
        return None
    if isinstance(ts, str):
        s = ts.strip()
        if not s:
            return None
        try:
            ts = float(s)
        except ValueError:
            try:
                dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.timestamp()
    if isinstance(ts, (int, float)):
        ts = float(ts)
        if ts != ts:  # NaN
            return None
        if ts > 1e17:    # ns -> s
            return ts / 1e9
        if ts > 1e14:    # us -> s
            return ts / 1e6
        if ts > 1e11:    # ms -> s
            return ts / 1e3
        return ts
    return None

# --- sampling granularity ---

_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*(s|sec|min|m|h|day|d|week|w)\s*$", re.IGNORECASE)
_UNIT_S = {"s": 1, "sec": 1, "min": 60, "m": 60, "h": 3600, "day": 86400, "d": 86400, "week": 604800, "w": 604800}

def interval_seconds(interval: str) -> int:
    """'1min' -> 60, '15min' -> 900, '1h' -> 3600, '1day' -> 86400."""
    m = _INTERVAL_RE.match(interval or "")
    if not m:
        raise ValueError(f"Unsupported interval: {interval!r}")
    n = int(m.group(1))
    if n <= 0:
        raise ValueError(f"Unsupported interval: {interval!r}")
    return n * _UNIT_S[m.group(2).lower()]

def bucket_start(ts: float, granularity_s: int) -> int:
    """Align timestamp to the start of its bucket."""
    return (int(ts) // granularity_s) * granularity_s
