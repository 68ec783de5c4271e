"""Tests for the token-bucket rate limiter."""

import pytest

from changereel.core.errors import CapacityError, RateLimitConfigError, RequestTooLargeError
from changereel.llm.rate_limiter import (
    RateLimitCategory,
    RateLimitConfig,
    RateLimiter,
    estimate_tokens,
    wait_for_rate_limit,
)
from tests.conftest import FakeTimer


@pytest.fixture
def timer() -> FakeTimer:
    # Small epoch values keep millisecond arithmetic exact enough for refill checks
    return FakeTimer(start=0.0)


@pytest.fixture
def limiter(timer) -> RateLimiter:
    return RateLimiter(
        configs={
            RateLimitCategory.SUMMARIZATION: RateLimitConfig(
                requests_per_minute=60, tokens_per_minute=6000
            ),
            RateLimitCategory.GENERAL: RateLimitConfig(
                requests_per_minute=120, tokens_per_minute=1200, burst_multiplier=2.0
            ),
        },
        clock=timer,
    )


class TestRateLimiter:
    """Admission, refill and configuration."""

    def test_allows_within_capacity(self, limiter):
        result = limiter.check_rate_limit(RateLimitCategory.SUMMARIZATION, 100)

        assert result.allowed
        assert result.remaining_requests == 59
        assert result.remaining_tokens == 5900
        assert result.retry_after_ms is None

    def test_token_shortfall_reports_retry_after(self, limiter, timer):
        assert limiter.check_rate_limit("summarization", 6000).allowed

        rejected = limiter.check_rate_limit("summarization", 500)
        assert not rejected.allowed
        # 6000 tokens/minute refill at 0.1 tokens per ms
        assert rejected.retry_after_ms == 5000

        timer.advance(4.9)
        assert not limiter.check_rate_limit("summarization", 500).allowed
        timer.advance(0.1)
        assert limiter.check_rate_limit("summarization", 500).allowed

    def test_rejection_consumes_nothing(self, limiter):
        limiter.check_rate_limit("summarization", 5990)
        before = limiter.get_status("summarization")

        limiter.check_rate_limit("summarization", 100)
        after = limiter.get_status("summarization")

        assert after.remaining_tokens == before.remaining_tokens
        assert after.remaining_requests == before.remaining_requests

    def test_request_bucket_limits_calls(self, limiter, timer):
        for _ in range(60):
            assert limiter.check_rate_limit("summarization").allowed

        rejected = limiter.check_rate_limit("summarization")
        assert not rejected.allowed
        assert rejected.retry_after_ms == 1000

        timer.advance(1)
        assert limiter.check_rate_limit("summarization").allowed

    def test_burst_multiplier_raises_capacity(self, limiter):
        assert limiter.get_status("general").remaining_tokens == 2400

    def test_refill_is_capped(self, limiter, timer):
        limiter.check_rate_limit("summarization", 1000)
        timer.advance(3600)

        status = limiter.get_status("summarization")
        assert status.remaining_tokens == 6000
        assert status.reset_time_ms == 0

    def test_get_status_has_no_side_effects(self, limiter):
        first = limiter.get_status("summarization")
        second = limiter.get_status("summarization")

        assert first == second

    def test_unknown_category(self, limiter):
        with pytest.raises(RateLimitConfigError):
            limiter.check_rate_limit("translation")
        with pytest.raises(RateLimitConfigError):
            limiter.get_status(RateLimitCategory.CHANGE_DETECTION)

    def test_reset_restores_capacity(self, limiter):
        limiter.check_rate_limit("summarization", 6000)
        limiter.reset("summarization")

        assert limiter.get_status("summarization").remaining_tokens == 6000

    def test_update_config_rebuilds_buckets(self, limiter):
        limiter.check_rate_limit("summarization", 6000)
        config = limiter.update_config("summarization", tokens_per_minute=12000)

        assert config.tokens_per_minute == 12000
        assert config.requests_per_minute == 60
        assert limiter.get_status("summarization").remaining_tokens == 12000

    def test_defaults(self):
        limiter = RateLimiter()

        assert limiter.get_config("summarization").requests_per_minute == 100
        assert limiter.get_config("change_detection").burst_multiplier == 2.0

    def test_from_settings_overrides_summarization(self, timer):
        class StubSettings:
            openai_requests_per_minute = 10
            openai_tokens_per_minute = 0

        limiter = RateLimiter.from_settings(StubSettings(), clock=timer)

        config = limiter.get_config("summarization")
        assert config.requests_per_minute == 10
        assert config.tokens_per_minute == 50000

    def test_request_larger_than_bucket_is_rejected(self, limiter):
        with pytest.raises(RequestTooLargeError) as exc_info:
            limiter.check_rate_limit("summarization", 6001)

        assert exc_info.value.details["token_capacity"] == 6000
        assert limiter.get_status("summarization").remaining_tokens == 6000
        # Burst capacity counts: 1200 tokens per minute with a 2x burst holds 2400
        assert limiter.check_rate_limit("general", 2400).allowed


class TestWaitForRateLimit:
    async def test_waits_then_admits(self, limiter, timer):
        limiter.check_rate_limit("summarization", 6000)
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)
            timer.advance(seconds)

        result = await wait_for_rate_limit(limiter, "summarization", 100, sleep=fake_sleep)

        assert result.allowed
        assert slept == [1.0]

    async def test_raises_capacity_error_past_max_wait(self, limiter):
        limiter.check_rate_limit("summarization", 6000)

        with pytest.raises(CapacityError) as exc_info:
            await wait_for_rate_limit(limiter, "summarization", 6000, max_wait_ms=1000)

        assert exc_info.value.retry_after_ms == 60000

    async def test_oversized_request_fails_without_waiting(self, limiter):
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        with pytest.raises(RequestTooLargeError) as exc_info:
            await wait_for_rate_limit(limiter, "summarization", 6001, sleep=fake_sleep)

        assert not exc_info.value.retryable
        assert slept == []


def test_estimate_tokens():
    assert estimate_tokens("abc", 0) == 1
    assert estimate_tokens("abcd", 2) == 2
