"""Tests for the sliding-window rate limiter."""

from branchwise.generation.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_allows_up_to_limit_then_blocks():
    limiter = RateLimiter(3, 60, clock=FakeClock())
    assert [limiter.is_allowed("u") for _ in range(4)] == [True, True, True, False]


def test_window_slides():
    clock = FakeClock()
    limiter = RateLimiter(2, 10, clock=clock)
    assert limiter.is_allowed("u")
    clock.advance(5)
    assert limiter.is_allowed("u")
    assert not limiter.is_allowed("u")
    clock.advance(5)
    # the first request is exactly window_seconds old and no longer counts
    assert limiter.is_allowed("u")
    assert not limiter.is_allowed("u")


def test_rejected_requests_do_not_count():
    clock = FakeClock()
    limiter = RateLimiter(1, 10, clock=clock)
    assert limiter.is_allowed("u")
    for _ in range(5):
        clock.advance(1)
        assert not limiter.is_allowed("u")
    clock.advance(5)
    assert limiter.is_allowed("u")


def test_identifiers_are_independent():
    limiter = RateLimiter(1, 60, clock=FakeClock())
    assert limiter.is_allowed("a")
    assert limiter.is_allowed("b")
    assert not limiter.is_allowed("a")


def test_remaining_and_retry_after():
    clock = FakeClock()
    limiter = RateLimiter(2, 30, clock=clock)
    assert limiter.remaining("u") == 2
    assert limiter.retry_after("u") == 0.0
    limiter.is_allowed("u")
    clock.advance(10)
    limiter.is_allowed("u")
    assert limiter.remaining("u") == 0
    assert limiter.retry_after("u") == 20.0


def test_reset_clears_history():
    limiter = RateLimiter(1, 60, clock=FakeClock())
    limiter.is_allowed("u")
    limiter.reset("u")
    assert limiter.is_allowed("u")
