"""Tests for the fixed-window rate limiter."""

import pytest

from tradeboard.ingestion.ratelimit import RateLimiter


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock)


class TestTryAcquire:
    def test_budget_then_denied(self, limiter):
        results = [limiter.try_acquire("yahoo", 2, 60) for _ in range(3)]
        assert results == [True, True, False]

    def test_window_expiry_restores_budget(self, limiter, clock):
        limiter.try_acquire("yahoo", 2, 60)
        limiter.try_acquire("yahoo", 2, 60)
        assert limiter.try_acquire("yahoo", 2, 60) is False

        clock.advance(61)
        assert limiter.try_acquire("yahoo", 2, 60) is True

    def test_still_denied_at_window_end(self, limiter, clock):
        limiter.try_acquire("yahoo", 1, 60)
        clock.advance(60)
        assert limiter.try_acquire("yahoo", 1, 60) is False

    def test_denied_calls_not_counted(self, limiter, clock):
        limiter.try_acquire("massive", 1, 60)
        for _ in range(5):
            limiter.try_acquire("massive", 1, 60)
        clock.advance(61)
        assert limiter.try_acquire("massive", 1, 60) is True
        assert limiter.remaining("massive", 1) == 0

    def test_providers_are_independent(self, limiter):
        assert limiter.try_acquire("yahoo", 1, 60) is True
        assert limiter.try_acquire("yahoo", 1, 60) is False
        assert limiter.try_acquire("alphavantage", 1, 60) is True

    def test_bursts_straddling_boundary_both_accepted(self, limiter, clock):
        clock.advance(59)
        first = [limiter.try_acquire("yahoo", 5, 60) for _ in range(5)]
        clock.advance(60.5)
        second = [limiter.try_acquire("yahoo", 5, 60) for _ in range(5)]
        assert all(first)
        assert all(second)


class TestRemainingAndReset:
    def test_remaining_untouched_is_full(self, limiter):
        assert limiter.remaining("yahoo", 120) == 120

    def test_remaining_counts_down(self, limiter):
        for _ in range(3):
            limiter.try_acquire("yahoo", 5, 60)
        assert limiter.remaining("yahoo", 5) == 2

    def test_remaining_after_expiry(self, limiter, clock):
        limiter.try_acquire("yahoo", 5, 60)
        clock.advance(120)
        assert limiter.remaining("yahoo", 5) == 5

    def test_reset_one(self, limiter):
        limiter.try_acquire("yahoo", 1, 60)
        limiter.try_acquire("massive", 1, 60)
        limiter.reset("yahoo")
        assert limiter.try_acquire("yahoo", 1, 60) is True
        assert limiter.try_acquire("massive", 1, 60) is False

    def test_reset_all(self, limiter):
        limiter.try_acquire("yahoo", 1, 60)
        limiter.try_acquire("massive", 1, 60)
        limiter.reset()
        assert limiter.remaining("yahoo", 1) == 1
        assert limiter.remaining("massive", 1) == 1
