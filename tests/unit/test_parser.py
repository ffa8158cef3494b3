import pytest
from sigmon.ingest import parser
from sigmon.utils.types import PricePoint, Tick

def test_parse_price_variants():
    m1 = {"event": "price", "symbol": "XAU/USD", "price": 2031.5, "timestamp": 1700000000}
    m2 = {"event": "price", "symbol": "XAU/USD", "price": "2031.5", "timestamp": 1700000000000,
          "day_volume": 12}
    t1 = parser.parse_price_msg(m1)
    t2 = parser.parse_price_msg(m2)
    assert isinstance(t1, Tick) and isinstance(t2, Tick)
    assert t1.symbol == "XAU/USD" and t2.symbol == "XAU/USD"
    assert t1.price == pytest.approx(2031.5) and t2.price == pytest.approx(2031.5)
    assert t2.ts == pytest.approx(1700000000.0)
    assert t2.volume == 12

def test_parse_non_price_returns_none():
    for m in [{"event": "heartbeat", "status": "ok"},
              {"event": "subscribe-status", "status": "ok", "fails": []}]:
        assert parser.parse_price_msg(m) is None

@pytest.mark.parametrize("bad", [None, "abc", "nan", float("inf"), True])
def test_unparseable_price_raises(bad):
    with pytest.raises(ValueError):
        parser.parse_price_msg({"event": "price", "symbol": "X", "price": bad})

def test_missing_symbol_uses_default_or_raises():
    m = {"event": "price", "price": 1.0, "timestamp": 1700000000}
    assert parser.parse_price_msg(m, default_symbol="XAU/USD").symbol == "XAU/USD"
    with pytest.raises(ValueError):
        parser.parse_price_msg(m)

def test_message_kind():
    assert parser.message_kind({"event": "price"}) == "price"
    assert parser.message_kind({"event": "heartbeat"}) == "heartbeat"
    assert parser.message_kind({"event": "reset-status"}) == "status"
    assert parser.message_kind({"status": "error", "message": "x"}) == "error"
    assert parser.message_kind({"foo": 1}) == "unknown"

def test_parse_bar_uses_close_and_datetime():
    bar = parser.parse_bar({"datetime": "2024-02-01 14:32:00", "open": "1", "high": "3",
                            "low": "0.5", "close": "2", "volume": "10"})
    assert isinstance(bar, PricePoint)
    assert bar.price == 2.0 and bar.close == 2.0 and bar.high == 3.0
    assert bar.ts == 1706797920.0

def test_parse_bar_rejects_unusable_rows():
    assert parser.parse_bar({"datetime": "2024-02-01 14:32:00", "close": "x"}) is None
    assert parser.parse_bar({"close": "1"}) is None
