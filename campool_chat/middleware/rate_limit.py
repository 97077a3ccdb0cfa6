"""
Rate Limit Middleware

Simple in-memory rate limiting for the REST gateway using a sliding window.
"""

import time
from collections import defaultdict
from typing import Callable, Dict, Optional

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from campool_chat.config import settings


# Paths that are never limited
EXEMPT_PATHS = {"/health", "/", "/docs", "/redoc", "/openapi.json"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-client sliding window limiter for HTTP requests.

    Clients are keyed by the first X-Forwarded-For address, else the peer
    address. WebSocket traffic does not pass through HTTP middleware.
    Limits are per process.
    """

    def __init__(self, app, limit_per_minute: Optional[int] = None, window_size: int = 60):
        super().__init__(app)
        self.requests: Dict[str, list] = defaultdict(list)
        self.window_size = window_size
        self.limit = limit_per_minute or settings.rate_limit_per_minute
        self._last_sweep = time.time()

    @staticmethod
    def _get_key(request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"

        return f"ip:{client_ip}"

    def _evict_idle(self, window_start: float) -> None:
        """Forget clients with no requests inside the window."""
        idle = [
            key for key, stamps in self.requests.items()
            if not stamps or stamps[-1] <= window_start
        ]
        for key in idle:
            del self.requests[key]

    def _is_rate_limited(self, key: str) -> bool:
        now = time.time()
        window_start = now - self.window_size

        if now - self._last_sweep >= self.window_size:
            self._evict_idle(window_start)
            self._last_sweep = now

        recent = [ts for ts in self.requests[key] if ts > window_start]
        if len(recent) >= self.limit:
            self.requests[key] = recent
            return True

        recent.append(now)
        self.requests[key] = recent
        return False

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        if self._is_rate_limited(self._get_key(request)):
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded. Please try again later.",
                    "retry_after_seconds": self.window_size
                },
                headers={"Retry-After": str(self.window_size)}
            )

        return await call_next(request)
