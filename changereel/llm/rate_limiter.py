"""Token-bucket rate limiting for AI completion calls."""

import asyncio
import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from changereel.core.errors import CapacityError, RateLimitConfigError, RequestTooLargeError
from changereel.core.logging import get_logger

logger = get_logger(__name__)

# Tolerance for float drift in refill arithmetic
_EPSILON = 1e-6


class RateLimitCategory(str, Enum):
    """Operation categories with independent limits."""

    SUMMARIZATION = "summarization"
    CHANGE_DETECTION = "change_detection"
    GENERAL = "general"


class RateLimitConfig(BaseModel):
    """Per-category limits."""

    requests_per_minute: int = Field(..., gt=0)
    tokens_per_minute: int = Field(..., gt=0)
    burst_multiplier: float = Field(default=1.0, ge=1.0)


DEFAULT_RATE_LIMITS: dict[RateLimitCategory, RateLimitConfig] = {
    RateLimitCategory.SUMMARIZATION: RateLimitConfig(
        requests_per_minute=100, tokens_per_minute=50000, burst_multiplier=1.5
    ),
    RateLimitCategory.CHANGE_DETECTION: RateLimitConfig(
        requests_per_minute=200, tokens_per_minute=20000, burst_multiplier=2.0
    ),
    RateLimitCategory.GENERAL: RateLimitConfig(
        requests_per_minute=150, tokens_per_minute=30000, burst_multiplier=1.5
    ),
}


class RateLimitResult(BaseModel):
    """Outcome of an admission check."""

    allowed: bool
    remaining_requests: int
    remaining_tokens: int
    reset_time_ms: int = Field(description="Milliseconds until both buckets are full")
    retry_after_ms: Optional[int] = None


class _BucketState:
    """Request and token buckets for one category."""

    __slots__ = (
        "remaining_requests",
        "remaining_tokens",
        "last_refill",
        "request_capacity",
        "token_capacity",
        "request_refill_per_ms",
        "token_refill_per_ms",
    )

    def __init__(self, config: RateLimitConfig, now_ms: float):
        self.request_capacity = config.requests_per_minute * config.burst_multiplier
        self.token_capacity = config.tokens_per_minute * config.burst_multiplier
        self.request_refill_per_ms = config.requests_per_minute / 60000
        self.token_refill_per_ms = config.tokens_per_minute / 60000
        self.remaining_requests = self.request_capacity
        self.remaining_tokens = self.token_capacity
        self.last_refill = now_ms

    def refill(self, now_ms: float) -> None:
        elapsed = max(now_ms - self.last_refill, 0)
        if elapsed:
            self.remaining_requests = min(
                self.request_capacity,
                self.remaining_requests + elapsed * self.request_refill_per_ms,
            )
            self.remaining_tokens = min(
                self.token_capacity,
                self.remaining_tokens + elapsed * self.token_refill_per_ms,
            )
        self.last_refill = now_ms

    def reset_time_ms(self) -> int:
        request_wait = (self.request_capacity - self.remaining_requests) / self.request_refill_per_ms
        token_wait = (self.token_capacity - self.remaining_tokens) / self.token_refill_per_ms
        return math.ceil(max(request_wait, token_wait, 0))


class RateLimiter:
    """
    Admission control keyed by operation category.

    Each category owns a request bucket and a token bucket. A check either
    consumes from both or from neither. Bucket updates are serialised so
    concurrent handlers cannot over-admit.
    """

    def __init__(
        self,
        configs: Optional[dict[RateLimitCategory, RateLimitConfig]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            configs: Limits per category, defaults to DEFAULT_RATE_LIMITS
            clock: Returns the current time in seconds
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._configs: dict[RateLimitCategory, RateLimitConfig] = dict(
            configs or DEFAULT_RATE_LIMITS
        )
        now_ms = self._now_ms()
        self._states = {
            category: _BucketState(config, now_ms)
            for category, config in self._configs.items()
        }

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.time) -> "RateLimiter":
        """Build a limiter applying the OPENAI_*_PER_MINUTE overrides."""
        configs = dict(DEFAULT_RATE_LIMITS)
        summarization = configs[RateLimitCategory.SUMMARIZATION]
        overrides = {}
        if settings.openai_requests_per_minute:
            overrides["requests_per_minute"] = settings.openai_requests_per_minute
        if settings.openai_tokens_per_minute:
            overrides["tokens_per_minute"] = settings.openai_tokens_per_minute
        if overrides:
            configs[RateLimitCategory.SUMMARIZATION] = summarization.model_copy(update=overrides)
        return cls(configs=configs, clock=clock)

    def check_rate_limit(
        self, category: RateLimitCategory | str, estimated_tokens: int = 0
    ) -> RateLimitResult:
        """
        Try to consume one request and ``estimated_tokens`` tokens.

        Args:
            category: Operation category
            estimated_tokens: Tokens the call is expected to use

        Returns:
            RateLimitResult; when not allowed nothing was consumed and
            retry_after_ms says how long until the shortfall refills

        Raises:
            RateLimitConfigError: If the category is not configured
            RequestTooLargeError: If estimated_tokens exceeds the bucket capacity
        """
        category = self._resolve(category)
        with self._lock:
            state = self._states[category]
            if estimated_tokens > state.token_capacity:
                raise RequestTooLargeError(
                    f"Request needs {estimated_tokens} tokens, {category.value} bucket holds "
                    f"{int(state.token_capacity)}",
                    details={
                        "category": category.value,
                        "estimated_tokens": estimated_tokens,
                        "token_capacity": int(state.token_capacity),
                    },
                )
            state.refill(self._now_ms())

            request_shortfall = 1 - state.remaining_requests
            token_shortfall = estimated_tokens - state.remaining_tokens

            if request_shortfall <= _EPSILON and token_shortfall <= _EPSILON:
                state.remaining_requests -= 1
                state.remaining_tokens -= estimated_tokens
                return self._result(state, allowed=True)

            waits = []
            if request_shortfall > _EPSILON:
                waits.append(math.ceil(request_shortfall / state.request_refill_per_ms))
            if token_shortfall > _EPSILON:
                waits.append(math.ceil(token_shortfall / state.token_refill_per_ms))
            retry_after_ms = max(max(waits), 1)

        logger.debug(
            "Rate limit exceeded",
            category=category.value,
            estimated_tokens=estimated_tokens,
            retry_after_ms=retry_after_ms,
        )
        return self._result(state, allowed=False, retry_after_ms=retry_after_ms)

    def get_status(self, category: RateLimitCategory | str) -> RateLimitResult:
        """Report bucket levels without consuming anything."""
        category = self._resolve(category)
        with self._lock:
            state = self._states[category]
            state.refill(self._now_ms())
            return self._result(state, allowed=state.remaining_requests >= 1)

    def reset(self, category: RateLimitCategory | str | None = None) -> None:
        """Restore one category, or every category, to full capacity."""
        categories = [self._resolve(category)] if category is not None else list(self._configs)
        now_ms = self._now_ms()
        with self._lock:
            for cat in categories:
                self._states[cat] = _BucketState(self._configs[cat], now_ms)

    def update_config(self, category: RateLimitCategory | str, **changes) -> RateLimitConfig:
        """Merge new limits into a category and rebuild its buckets."""
        category = self._resolve(category)
        with self._lock:
            merged = self._configs[category].model_copy(update=changes)
            merged = RateLimitConfig.model_validate(merged.model_dump())
            self._configs[category] = merged
            self._states[category] = _BucketState(merged, self._now_ms())
        logger.info("Rate limit config updated", category=category.value, **changes)
        return merged

    def get_config(self, category: RateLimitCategory | str) -> RateLimitConfig:
        return self._configs[self._resolve(category)]

    def _resolve(self, category: RateLimitCategory | str) -> RateLimitCategory:
        try:
            resolved = RateLimitCategory(category)
        except ValueError:
            raise RateLimitConfigError(f"Unknown rate limit category: {category}") from None
        if resolved not in self._configs:
            raise RateLimitConfigError(f"Unknown rate limit category: {category}")
        return resolved

    def _now_ms(self) -> float:
        return self._clock() * 1000

    @staticmethod
    def _result(
        state: _BucketState, allowed: bool, retry_after_ms: Optional[int] = None
    ) -> RateLimitResult:
        return RateLimitResult(
            allowed=allowed,
            remaining_requests=int(state.remaining_requests),
            remaining_tokens=int(state.remaining_tokens),
            reset_time_ms=state.reset_time_ms(),
            retry_after_ms=retry_after_ms,
        )


def estimate_tokens(prompt: str, max_output_tokens: int = 0) -> int:
    """Rough token estimate: about three characters per token."""
    return math.ceil((len(prompt) + max_output_tokens) / 3)


async def wait_for_rate_limit(
    limiter: RateLimiter,
    category: RateLimitCategory | str,
    estimated_tokens: int = 0,
    max_wait_ms: int = 60000,
    sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
) -> RateLimitResult:
    """
    Wait until the limiter admits the request.

    Raises:
        CapacityError: If admission would take longer than max_wait_ms
    """
    waited_ms = 0
    while True:
        result = limiter.check_rate_limit(category, estimated_tokens)
        if result.allowed:
            return result
        retry_after_ms = result.retry_after_ms or 1
        if waited_ms + retry_after_ms > max_wait_ms:
            name = getattr(category, "value", category)
            raise CapacityError(
                f"Rate limit for {name} not available within {max_wait_ms}ms",
                retry_after_ms=retry_after_ms,
                details={"category": name, "estimated_tokens": estimated_tokens},
            )
        await sleep(retry_after_ms / 1000)
        waited_ms += retry_after_ms
