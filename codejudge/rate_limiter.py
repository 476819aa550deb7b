"""Simple in-memory rate limiting helpers."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from codejudge.config import get_settings


class RateLimitExceeded(Exception):
    def __init__(self, key: str) -> None:
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key


@dataclass
class _Bucket:
    hits: Deque[float]


class RateLimiter:
    """An asyncio-friendly sliding window rate limiter."""

    def __init__(self, *, limit: int, window_seconds: float) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window = window_seconds
        self._lock = asyncio.Lock()
        self._buckets: Dict[str, _Bucket] = {}

    async def try_acquire(self, key: str) -> bool:
        now = time.monotonic()
        cutoff = now - self.window

        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(deque())
                self._buckets[key] = bucket

            hits = bucket.hits
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                return False

            hits.append(now)
            return True

    async def check(self, key: str) -> None:
        if not await self.try_acquire(key):
            raise RateLimitExceeded(key)


_submission_limiter: Optional[RateLimiter] = None


def get_submission_rate_limiter() -> Optional[RateLimiter]:
    """Return the shared rate limiter for code submissions (if configured)."""

    global _submission_limiter
    if _submission_limiter is not None:
        return _submission_limiter

    settings = get_settings()
    if settings.submission_rate_limit <= 0 or settings.submission_rate_window <= 0:
        return None

    _submission_limiter = RateLimiter(
        limit=settings.submission_rate_limit,
        window_seconds=settings.submission_rate_window,
    )
    return _submission_limiter


__all__ = ["RateLimitExceeded", "RateLimiter", "get_submission_rate_limiter"]
