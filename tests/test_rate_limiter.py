"""
Unit tests for the fixed-window rate limiter.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from ai_gen_broker.core.rate_limiter import FixedWindowRateLimiter, RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestFixedWindowRateLimiter:
    """Test per-scope caps and window expiry."""

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = FixedWindowRateLimiter({"developer": 3}, window_seconds=60, clock=self.clock)

    def test_allows_up_to_limit(self):
        results = [self.limiter.allow("developer", "alice") for _ in range(4)]

        assert results == [True, True, True, False]
        assert self.limiter.remaining("developer", "alice") == 0

    def test_identities_are_independent(self):
        for _ in range(3):
            self.limiter.allow("developer", "alice")

        assert self.limiter.allow("developer", "bob") is True

    def test_window_expiry(self):
        for _ in range(3):
            self.limiter.allow("developer", "alice")
        self.clock.now += 60

        assert self.limiter.remaining("developer", "alice") == 3
        assert self.limiter.allow("developer", "alice") is True

    def test_expired_windows_are_evicted(self):
        for ip in range(50):
            self.limiter.allow("developer", f"10.0.0.{ip}")
        assert self.limiter.tracked_keys() == 50

        self.clock.now += 60
        self.limiter.allow("developer", "10.0.1.1")

        assert self.limiter.tracked_keys() == 1

    def test_live_windows_survive_sweep(self):
        self.limiter.allow("developer", "alice")
        self.clock.now += 30
        self.limiter.allow("developer", "bob")
        self.clock.now += 30

        self.limiter.allow("developer", "carol")

        assert self.limiter.tracked_keys() == 2
        assert self.limiter.remaining("developer", "bob") == 2

    def test_unlimited_scope(self):
        assert all(self.limiter.allow("admin", "root") for _ in range(100))
        assert self.limiter.remaining("admin", "root") == -1

    def test_concurrent_allow_respects_cap(self):
        limiter = FixedWindowRateLimiter({"sme": 25}, window_seconds=3600)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: limiter.allow("sme", "carol"), range(100)))

        assert results.count(True) == 25

    def test_invalid_window(self):
        with pytest.raises(ValueError, match="window_seconds must be > 0"):
            FixedWindowRateLimiter({}, window_seconds=0)

    def test_base_interface_is_abstract(self):
        with pytest.raises(NotImplementedError):
            RateLimiter().allow("scope", "id")
