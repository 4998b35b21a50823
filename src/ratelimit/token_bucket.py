from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_KEY = "default"
MS_PER_MINUTE = 60_000


class RateLimitConfig(BaseModel):
    requests_per_minute: float = Field(10, gt=0)
    burst_size: int = Field(5, ge=1)


@dataclass
class _Bucket:
    tokens: float
    last_refill_ms: float


class TokenBucketRateLimiter:
    """Per-key token bucket guarding calls to the upstream API.

    Tokens refill continuously at ``requests_per_minute / 60000`` per
    millisecond and are capped at ``burst_size``. A bucket is created full on
    first use. All reads and updates of a bucket happen under one lock, so
    concurrent callers can never be admitted on the same token.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config.model_copy()
        self._clock = clock
        self._wall_clock = wall_clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        logger.info(
            "Rate limiter initialized (%s requests/min, burst %s)",
            config.requests_per_minute,
            config.burst_size,
        )

    @property
    def config(self) -> RateLimitConfig:
        return self._config.model_copy()

    @property
    def _tokens_per_ms(self) -> float:
        return self._config.requests_per_minute / MS_PER_MINUTE

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _projected_tokens(self, bucket: _Bucket, now_ms: float) -> float:
        elapsed_ms = max(0.0, now_ms - bucket.last_refill_ms)
        return min(
            float(self._config.burst_size),
            bucket.tokens + elapsed_ms * self._tokens_per_ms,
        )

    def is_allowed(self, key: str = DEFAULT_KEY) -> bool:
        with self._lock:
            now_ms = self._now_ms()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=float(self._config.burst_size), last_refill_ms=now_ms)
                self._buckets[key] = bucket

            bucket.tokens = self._projected_tokens(bucket, now_ms)
            bucket.last_refill_ms = now_ms

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                logger.debug("Request allowed for %s (%.2f tokens left)", key, bucket.tokens)
                return True

            tokens = bucket.tokens

        logger.warning("Rate limit exceeded for %s (%.2f tokens)", key, tokens)
        return False

    def _peek_tokens(self, key: str) -> float:
        bucket = self._buckets.get(key)
        if bucket is None:
            return float(self._config.burst_size)
        return self._projected_tokens(bucket, self._now_ms())

    def _seconds_until_token(self, tokens: float) -> float:
        if tokens >= 1:
            return 0.0
        return (1 - tokens) / self._tokens_per_ms / 1000

    def get_remaining(self, key: str = DEFAULT_KEY) -> float:
        """Tokens available for `key` right now, without consuming any."""
        with self._lock:
            return self._peek_tokens(key)

    def reset(self, key: str = DEFAULT_KEY) -> None:
        with self._lock:
            self._buckets.pop(key, None)
        logger.debug("Rate limit reset for %s", key)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()
        logger.info("All rate limits cleared")

    def seconds_until_token(self, key: str = DEFAULT_KEY) -> float:
        with self._lock:
            return self._seconds_until_token(self._peek_tokens(key))

    def get_headers(self, key: str = DEFAULT_KEY) -> dict[str, str]:
        """Rate limit headers; the reset time is when the next token becomes available."""
        with self._lock:
            remaining = self._peek_tokens(key)
            reset_at = self._wall_clock() + self._seconds_until_token(remaining)
        return {
            "X-RateLimit-Limit": str(self._config.burst_size),
            "X-RateLimit-Remaining": str(max(0, math.floor(remaining))),
            "X-RateLimit-Reset": str(math.ceil(reset_at)),
        }

    async def wait_for_token(
        self,
        key: str = DEFAULT_KEY,
        max_wait_seconds: float = 60.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        deadline = self._clock() + max_wait_seconds
        seconds_per_token = 60.0 / self._config.requests_per_minute
        while True:
            if self.is_allowed(key):
                return True
            left = deadline - self._clock()
            if left <= 0:
                break
            await sleep(min(seconds_per_token, left))

        logger.warning("Rate limit wait timed out for %s after %ss", key, max_wait_seconds)
        return False
