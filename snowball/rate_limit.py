"""
Per-IP rate limiting for the user and auth endpoints.

A sliding window counter kept in process memory: each bucket holds the
timestamps of the hits inside the current window.
"""

import threading
import time
from collections import deque
from typing import Deque, Dict, NamedTuple

import structlog
from fastapi import HTTPException, Request

logger = structlog.get_logger()

WINDOW_SECONDS = 15 * 60


class RateLimitResult(NamedTuple):
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    reset_at: float  # Unix timestamp
    limit: int


class SlidingWindowRateLimiter:
    def __init__(self, limit: int, window_seconds: int = WINDOW_SECONDS, clock=time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _prune(self, bucket: Deque[float], now: float) -> None:
        window_start = now - self.window_seconds
        while bucket and bucket[0] <= window_start:
            bucket.popleft()

    def _sweep(self, now: float) -> None:
        """Drop every key whose hits have all left the window; runs at most once per window"""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            bucket = self._hits[key]
            self._prune(bucket, now)
            if not bucket:
                del self._hits[key]

    def _bucket(self, key: str, now: float) -> Deque[float]:
        self._sweep(now)
        bucket = self._hits.get(key)
        if bucket is None:
            return deque()
        self._prune(bucket, now)
        if not bucket:
            del self._hits[key]
        return bucket

    def check(self, key: str) -> RateLimitResult:
        """Report whether another hit is allowed without recording one"""
        with self._lock:
            now = self._clock()
            bucket = self._bucket(key, now)
            count = len(bucket)
            reset_at = (bucket[0] if bucket else now) + self.window_seconds
            return RateLimitResult(
                allowed=count < self.limit,
                remaining=max(0, self.limit - count),
                reset_at=reset_at,
                limit=self.limit,
            )

    def hit(self, key: str) -> RateLimitResult:
        """Record a hit and report whether it was within the limit"""
        with self._lock:
            now = self._clock()
            bucket = self._bucket(key, now)
            if len(bucket) >= self.limit:
                return RateLimitResult(False, 0, bucket[0] + self.window_seconds, self.limit)
            bucket.append(now)
            self._hits[key] = bucket
            return RateLimitResult(
                allowed=True,
                remaining=self.limit - len(bucket),
                reset_at=bucket[0] + self.window_seconds,
                limit=self.limit,
            )

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self, key: str = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


# 5 failed login/register attempts per 15 minutes; successful attempts are not counted
auth_limiter = SlidingWindowRateLimiter(limit=5)
# 100 requests per 15 minutes for the rest of the user API
user_api_limiter = SlidingWindowRateLimiter(limit=100)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _too_many(message: str) -> HTTPException:
    return HTTPException(
        status_code=429,
        detail={"error": message, "retryAfter": "15 minutes"},
    )


async def auth_rate_limit(request: Request) -> str:
    """Dependency: reject the request when the IP has used up its failed attempts"""
    ip = client_ip(request)
    if not auth_limiter.check(ip).allowed:
        logger.warning("auth_rate_limited", ip=ip)
        raise _too_many("Too many authentication attempts from this IP, please try again after 15 minutes.")
    return ip


def record_auth_failure(ip: str) -> None:
    auth_limiter.hit(ip)


async def user_api_rate_limit(request: Request) -> None:
    ip = client_ip(request)
    if not user_api_limiter.hit(ip).allowed:
        logger.warning("user_api_rate_limited", ip=ip)
        raise _too_many("Too many requests to user API, please try again later.")


# 10 billing requests per 15 minutes
payment_limiter = SlidingWindowRateLimiter(limit=10)


async def payment_rate_limit(request: Request) -> None:
    ip = client_ip(request)
    if not payment_limiter.hit(ip).allowed:
        logger.warning("payment_rate_limited", ip=ip)
        raise _too_many("Too many payment requests, please try again later.")
