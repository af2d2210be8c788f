"""
In-memory sliding-window rate limiter, installed as HTTP middleware.

State is per process; instances behind a load balancer do not share counts.
"""

import logging
import math
import time
from collections import deque

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    return request.client.host if request.client else 'anon'


class RateLimiter:
    """Allow at most ``limit`` requests per client in any ``window`` seconds."""

    def __init__(self, limit: int = 100, window: int = 60, clock=time.monotonic) -> None:
        self.limit = limit
        self.window = window
        self.clock = clock
        self.requests: dict[str, deque] = {}

    def hit(self, key: str) -> tuple[bool, int, float]:
        """Record a request for ``key``.

        Returns:
            (allowed, remaining, seconds until the oldest hit expires)
        """
        now = self.clock()
        history = self.requests.setdefault(key, deque())
        while history and now - history[0] >= self.window:
            history.popleft()
        if len(history) >= self.limit:
            return False, 0, self.window - (now - history[0])
        history.append(now)
        reset = self.window - (now - history[0])
        return True, self.limit - len(history), reset

    def sweep(self) -> int:
        """Drop clients with no hit inside the window. Returns the number removed."""
        now = self.clock()
        idle = [k for k, h in self.requests.items() if not h or now - h[-1] >= self.window]
        for key in idle:
            del self.requests[key]
        return len(idle)

    async def __call__(self, request: Request, call_next):
        key = client_ip(request)
        allowed, remaining, reset = self.hit(key)
        headers = {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(remaining),
            'X-RateLimit-Reset': str(math.ceil(reset)),
        }
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
            headers['Retry-After'] = str(max(1, math.ceil(reset)))
            return JSONResponse({'error': 'Too many requests'}, status_code=429, headers=headers)
        response = await call_next(request)
        response.headers.update(headers)
        return response
