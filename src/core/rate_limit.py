"""
Per-client rate limiting for the recommendation endpoints.

Fixed window per key: the first request opens a window of window_seconds,
every request inside it counts, and the window resets once it expires.
Keys look like "rec:<client ip>". Over the limit the middleware answers 429
with Retry-After instead of calling the route.

State is process-local. Several uvicorn workers each keep their own counts.
"""

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Iterable, Optional, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import get_logger


logger = get_logger(__name__)

RECOMMEND_PATHS = ("/api/recommend", "/api/recommend-more")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0


class FixedWindowRateLimiter:
    """Counts hits per key in fixed windows."""

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        cleanup_interval: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}  # key -> (count, reset_at)
        self._lock = Lock()
        self._last_cleanup = clock()

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)

            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + self.window_seconds
            count += 1
            self._windows[key] = (count, reset_at)

        if count > self.max_requests:
            return RateLimitResult(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, int(reset_at - now + 0.999)),
            )
        return RateLimitResult(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - count,
            reset_at=reset_at,
        )

    def _maybe_cleanup(self, now: float):
        if now - self._last_cleanup < self._cleanup_interval:
            return
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]
        self._last_cleanup = now

    def __len__(self) -> int:
        return len(self._windows)


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limits selected paths per client IP.

    Usage:
        app.add_middleware(RateLimitMiddleware, requests_per_minute=60)
    """

    def __init__(
        self,
        app,
        requests_per_minute: int = 60,
        paths: Iterable[str] = RECOMMEND_PATHS,
        key_prefix: str = "rec",
        limiter: Optional[FixedWindowRateLimiter] = None,
    ):
        super().__init__(app)
        self.paths = frozenset(paths)
        self.key_prefix = key_prefix
        self.limiter = limiter or FixedWindowRateLimiter(max_requests=requests_per_minute)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path not in self.paths:
            return await call_next(request)

        key = f"{self.key_prefix}:{client_ip(request)}"
        result = self.limiter.hit(key)
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(int(result.reset_at)),
        }

        if not result.allowed:
            logger.warning("Rate limit exceeded", key=key, path=request.url.path)
            headers["Retry-After"] = str(result.retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limited",
                    "detail": "Rate limit exceeded",
                    "retryAfter": result.retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
