"""
Gatekeeper - Rate Limiting

Token-bucket limiter for the unauthenticated auth endpoints
(register, login, federated sign-in, resend verification, password
reset), keyed by client IP and endpoint.

Counters are process-local. Disabled when RATE_LIMIT_ENABLED is false.
"""

import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Tuple

from fastapi import Request

from backend.auth.dependencies import get_client_ip
from backend.config import settings
from backend.errors import RateLimitedError
from backend.logging import get_logger


logger = get_logger(__name__)


STALE_SECONDS = 3600


@dataclass
class TokenBucket:
    tokens: float
    last_updated: float


class RateLimitStorage:
    """Thread-safe in-memory token buckets."""

    def __init__(self, cleanup_interval: int = 600):
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = Lock()
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = cleanup_interval

    def consume(self, key: str, capacity: int, window_seconds: float) -> Tuple[bool, float]:
        """
        Take one token from the bucket for `key`.

        The bucket holds `capacity` tokens and refills at
        capacity / window_seconds tokens per second.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = time.monotonic()
        refill_rate = capacity / window_seconds

        with self._lock:
            if now - self._last_cleanup > self._cleanup_interval:
                self._cleanup_stale(now)

            bucket = self._buckets.get(key)
            if bucket is None:
                self._buckets[key] = TokenBucket(tokens=capacity - 1.0, last_updated=now)
                return True, 0.0

            bucket.tokens = min(float(capacity), bucket.tokens + (now - bucket.last_updated) * refill_rate)
            bucket.last_updated = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True, 0.0

            return False, (1.0 - bucket.tokens) / refill_rate

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    def _cleanup_stale(self, now: float) -> None:
        stale = [k for k, b in self._buckets.items() if now - b.last_updated > STALE_SECONDS]
        for k in stale:
            del self._buckets[k]
        self._last_cleanup = now


rate_limit_storage = RateLimitStorage()


def rate_limit(scope: str, capacity: int, window_seconds: float = 60.0):
    """
    Dependency factory enforcing a per-IP limit on one endpoint group.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit("auth", 10))])

    Raises:
        RateLimitedError 429: Bucket exhausted
    """
    async def dependency(request: Request) -> None:
        if not settings.RATE_LIMIT_ENABLED:
            return

        key = f"{scope}:{get_client_ip(request)}"
        allowed, retry_after = rate_limit_storage.consume(key, capacity, window_seconds)
        if not allowed:
            logger.warning("rate_limit.exceeded", scope=scope, path=request.url.path, retry_after=int(retry_after))
            raise RateLimitedError(f"Too many requests, try again in {int(retry_after) + 1} seconds")

    return dependency


auth_rate_limit = rate_limit("auth", settings.AUTH_RATE_LIMIT_PER_MINUTE)
password_reset_rate_limit = rate_limit(
    "password_reset",
    settings.PASSWORD_RESET_RATE_LIMIT_PER_HOUR,
    window_seconds=3600.0,
)
