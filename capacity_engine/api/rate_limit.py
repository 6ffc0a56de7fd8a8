# capacity_engine/api/rate_limit.py
"""Fixed-window per-client rate limiting for the capacity routes."""

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

from fastapi import HTTPException, Request, Response

# Expired windows are purged once this many clients are tracked
PURGE_THRESHOLD = 10_000


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Allows ``max_requests`` per client per ``window_seconds``."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.time):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def check(self, client_key: str) -> RateLimitResult:
        now = self._clock()

        with self._lock:
            window = self._windows.get(client_key)

            if window is None or now >= window.reset_at:
                if len(self._windows) >= PURGE_THRESHOLD:
                    self._purge(now)
                window = _Window(count=1, reset_at=now + self.window_seconds)
                self._windows[client_key] = window
                return RateLimitResult(True, self.max_requests, self.max_requests - 1, window.reset_at)

            if window.count >= self.max_requests:
                return RateLimitResult(False, self.max_requests, 0, window.reset_at)

            window.count += 1
            return RateLimitResult(
                True, self.max_requests, self.max_requests - window.count, window.reset_at
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _purge(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


def enforce(limiter: FixedWindowRateLimiter, request: Request, response: Response) -> RateLimitResult:
    """Count the request; raise 429 when over the limit, else set headers."""
    result = limiter.check(client_key(request))

    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers=result.headers(),
        )

    response.headers.update(result.headers())
    return result
