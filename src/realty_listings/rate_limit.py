"""Per-client rate limiting for public form submissions.

Token bucket per client address: ``burst_size`` submissions right away,
then ``requests_per_minute`` sustained.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from realty_listings.logging_config import get_logger

if TYPE_CHECKING:
    from realty_listings.config import Config

logger = get_logger(__name__)

# Minimum idle time before a bucket is forgotten
DEFAULT_IDLE_SECONDS = 600.0


@dataclass
class TokenBucket:
    """Token bucket refilled continuously at ``fill_rate`` tokens per second."""

    capacity: float
    tokens: float
    fill_rate: float
    last_update: float = field(default_factory=time.monotonic)

    def refill(self, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        elapsed = max(0.0, now - self.last_update)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.fill_rate)
        self.last_update = now

    def consume(self, tokens: float = 1.0) -> bool:
        """Take tokens if available.

        Returns:
            True if the tokens were taken
        """
        self.refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def time_until_available(self, tokens: float = 1.0) -> float:
        """Seconds until ``tokens`` can be taken (0 if now)."""
        self.refill()
        if self.tokens >= tokens:
            return 0.0
        return (tokens - self.tokens) / self.fill_rate


class RateLimitError(Exception):
    """A client exceeded its submission rate."""

    def __init__(self, message: str, retry_after: float) -> None:
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds until the next submission is allowed
        """
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, str | float]:
        """Response body for a 429 reply."""
        return {
            "error": "rate_limited",
            "message": str(self),
            "retry_after": self.retry_after,
        }


class RateLimiter:
    """Keyed token buckets, one per client.

    Example:
        limiter = RateLimiter(requests_per_minute=5, burst_size=3)
        try:
            await limiter.check(client_address)
        except RateLimitError as e:
            ...  # reply 429 with e.retry_after
    """

    def __init__(
        self,
        requests_per_minute: int = 5,
        burst_size: int = 3,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
    ) -> None:
        if requests_per_minute <= 0 or burst_size <= 0:
            msg = "requests_per_minute and burst_size must be positive"
            raise ValueError(msg)

        self._burst_size = burst_size
        self._fill_rate = requests_per_minute / 60.0
        # A bucket is only forgotten once it would have refilled completely
        self._idle_seconds = max(idle_seconds, burst_size / self._fill_rate)
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = asyncio.Lock()

    def _get_bucket(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                capacity=float(self._burst_size),
                tokens=float(self._burst_size),
                fill_rate=self._fill_rate,
            )
            self._buckets[key] = bucket
        return bucket

    def _prune(self, now: float) -> None:
        stale = [k for k, b in self._buckets.items() if now - b.last_update > self._idle_seconds]
        for key in stale:
            del self._buckets[key]

    async def check(self, key: str) -> None:
        """Record one submission for ``key``.

        Raises:
            RateLimitError: If the client is over its limit
        """
        async with self._lock:
            self._prune(time.monotonic())
            bucket = self._get_bucket(key)
            if bucket.consume():
                return
            retry_after = math.ceil(bucket.time_until_available())

        logger.info("Rate limit reached for client %s (retry in %ss)", key, retry_after)
        raise RateLimitError("Too many submissions, try again later", float(retry_after))

    def tracked_keys(self) -> int:
        return len(self._buckets)


def create_rate_limiter(config: Config) -> RateLimiter:
    """Build the contact form limiter from configuration."""
    return RateLimiter(
        requests_per_minute=config.contact_rate_limit_per_minute,
        burst_size=config.contact_rate_limit_burst,
    )
