from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class Bucket:
    tokens: int
    window_start: float


class RateLimiter:
    """
    In-memory per-client token bucket.

    Each client identifier gets ``points`` tokens; the bucket is refilled
    in full once ``duration`` seconds have passed since the window opened.
    Buckets are created on first use and live for the life of the process.
    """

    def __init__(self, points: int = 60, duration: float = 60, clock: Callable[[], float] = time.monotonic):
        self.points = points
        self.duration = duration
        self._clock = clock
        self.buckets: Dict[str, Bucket] = {}

    def consume(self, identifier: str) -> int:
        """
        Take one token for ``identifier``.

        Returns:
            Tokens remaining in the current window

        Raises:
            RateLimited: The bucket is empty; ``retry_after`` holds the
                seconds until it refills
        """
        now = self._clock()
        bucket = self.buckets.get(identifier)

        if bucket is None or now - bucket.window_start >= self.duration:
            bucket = Bucket(tokens=self.points, window_start=now)
            self.buckets[identifier] = bucket

        if bucket.tokens <= 0:
            raise RateLimited(retry_after=bucket.window_start + self.duration - now)

        bucket.tokens -= 1
        return bucket.tokens

    def cleanup(self) -> int:
        """Drop buckets whose window has expired. Returns how many were dropped."""
        now = self._clock()
        expired = [k for k, v in self.buckets.items() if now - v.window_start >= self.duration]
        for k in expired:
            del self.buckets[k]
        return len(expired)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests over the per-client budget before they reach a route.

    Runs ahead of every endpoint, so a flood of sign requests cannot drive
    repeated on-demand signer loads.
    """

    def __init__(self, app, limiter: RateLimiter, cleanup_every: int = 1000):
        super().__init__(app)
        self.limiter = limiter
        self.cleanup_every = cleanup_every
        self._seen = 0

    @staticmethod
    def client_id(request: Request) -> str:
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next):
        self._seen += 1
        if self._seen % self.cleanup_every == 0:
            self.limiter.cleanup()

        client = self.client_id(request)
        try:
            self.limiter.consume(client)
        except RateLimited as exc:
            logger.info(f"Rate limit exceeded for {client}")
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_payload(),
                headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
            )
        return await call_next(request)
