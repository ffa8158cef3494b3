import pytest

from sigmon.alerts.builtin_signals import (
    analyze_latest_signals,
    build_signal_history,
    detect_confirm_buy,
    detect_confirm_sell,
    detect_stochastic_buy,
    detect_stochastic_sell,
)
from sigmon.data.unified import UnifiedDataPoint as P


def _kd(ts, k, d, rsi=None):
    return P(ts=ts, k=k, d=d, rsi=rsi)


# ---------- crossovers in zone ----------

def test_stochastic_buy_needs_cross_inside_oversold():
    assert detect_stochastic_buy(_kd(0, 15, 18), _kd(60, 19, 17))
    # touching counts as "from below"
    assert detect_stochastic_buy(_kd(0, 12, 12), _kd(60, 14, 13))
    # %K on the line is not strictly oversold
    assert not detect_stochastic_buy(_kd(0, 15, 18), _kd(60, 20, 17))
    # no cross: already above
    assert not detect_stochastic_buy(_kd(0, 16, 15), _kd(60, 19, 17))
    # equal after is not a cross
    assert not detect_stochastic_buy(_kd(0, 15, 18), _kd(60, 17, 17))


def test_stochastic_sell_needs_cross_inside_overbought():
    assert detect_stochastic_sell(_kd(0, 85, 82), _kd(60, 81, 83))
    assert not detect_stochastic_sell(_kd(0, 85, 82), _kd(60, 81, 80))
    assert not detect_stochastic_sell(_kd(0, 81, 83), _kd(60, 82, 84))


def test_missing_values_never_signal():
    assert not detect_stochastic_buy(None, _kd(60, 19, 17))
    assert not detect_stochastic_buy(P(ts=0, k=15), _kd(60, 19, 17))
    assert not detect_confirm_buy(10, None, 20)
    assert not detect_confirm_sell(90, 90, None)


@pytest.mark.parametrize("k,d,rsi,expected", [
    (19, 25, 29, True),     # either line in zone
    (25, 19, 29, True),
    (25, 25, 29, False),
    (19, 19, 30, False),    # RSI bound is strict
])
def test_confirm_buy(k, d, rsi, expected):
    assert detect_confirm_buy(k, d, rsi) is expected


@pytest.mark.parametrize("k,d,rsi,expected", [
    (81, 70, 71, True),
    (70, 81, 71, True),
    (80, 80, 75, False),
    (85, 85, 70, False),
])
def test_confirm_sell(k, d, rsi, expected):
    assert detect_confirm_sell(k, d, rsi) is expected


# ---------- latest status ----------

def test_status_needs_two_stochastic_points():
    status = analyze_latest_signals([_kd(0, 10, 12, rsi=20)])
    assert not status.active
    assert status.k is None


def test_status_reports_cross_and_confirmation():
    series = [_kd(0, 15, 18, rsi=28), _kd(60, 19, 17), P(ts=120, price=1.0)]
    status = analyze_latest_signals(series)
    assert status.ts == 60
    assert (status.k, status.d) == (19, 17)
    assert status.stochastic_signal == "BUY"
    assert "Bullish crossover" in status.stochastic_reason
    # RSI comes from the most recent point carrying one
    assert status.rsi == 28
    assert status.confirmation_signal == "BUY"


def test_status_quiet_outside_zones():
    status = analyze_latest_signals([_kd(0, 40, 45, rsi=50), _kd(60, 50, 45, rsi=55)])
    assert not status.active
    assert status.stochastic_reason == "No stochastic crossover signal"
    assert status.confirmation_reason == "No strong confirmation"


# ---------- history scan ----------

SERIES = [
    _kd(0, 30, 25, rsi=50),
    _kd(60, 15, 18, rsi=25),    # confirm BUY
    _kd(120, 19, 17, rsi=25),   # cross BUY, confirmation skipped
    _kd(180, 85, 82, rsi=75),   # confirm SELL
    _kd(240, 81, 83),           # cross SELL
]


def test_history_most_recent_first():
    hist = build_signal_history(SERIES)
    assert [(s.action, s.ts, s.source) for s in hist] == [
        ("SELL", 240, "stochastic"),
        ("SELL", 180, "confirm"),
        ("BUY", 120, "stochastic"),
        ("BUY", 60, "confirm"),
    ]
    assert hist[0].reason == "%K↓%D over 80"
    assert hist[-1].reason == "Confirm: RSI<30 + Stoch<20"
    assert hist[0].to_dict()["time"] == "1970-01-01T00:04:00Z"


def test_history_truncated_to_max_signals():
    assert [s.ts for s in build_signal_history(SERIES, max_signals=2)] == [240, 180]
    assert build_signal_history(SERIES[:1]) == []


@pytest.mark.parametrize("rsi_ts,expected", [(120, 1), (180, 0)])
def test_history_uses_nearby_rsi_within_tolerance(rsi_ts, expected):
    series = [_kd(0, 50, 50), _kd(60, 10, 12), P(ts=rsi_ts, rsi=20)]
    assert len(build_signal_history(series)) == expected
