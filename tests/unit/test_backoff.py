from sigmon.utils.backoff import ReconnectBackoff

def test_reconnect_delays_non_decreasing_up_to_cap():
    b = ReconnectBackoff(base_s=3.0, factor=1.5, max_s=10.0, max_attempts=10)
    delays = [b.next_delay() for _ in range(8)]
    assert delays[:3] == [3.0, 4.5, 6.75]
    assert all(a <= c for a, c in zip(delays, delays[1:]))
    assert max(delays) == 10.0

def test_reconnect_resets_to_base_after_success():
    b = ReconnectBackoff(base_s=3.0, factor=1.5, max_s=60.0)
    for _ in range(4):
        b.next_delay()
    b.reset()
    assert b.attempts == 0
    assert b.next_delay() == 3.0

def test_exhausted_after_max_attempts():
    b = ReconnectBackoff(max_attempts=2)
    b.next_delay()
    assert not b.exhausted
    b.next_delay()
    assert b.exhausted

def test_zero_max_attempts_never_exhausts():
    b = ReconnectBackoff(max_attempts=0)
    for _ in range(50):
        b.next_delay()
    assert not b.exhausted
