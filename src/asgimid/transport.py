# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Rate-limited outbound HTTP for httpx clients.

``RateLimitedTransport`` waits on a ``Limiter`` before every request and
then delegates to an inner httpx transport. ``TokenBucketLimiter`` is an
in-process limiter satisfying ``Limiter``.

Design choices:

- **Token Bucket** with lazy refill on ``time.monotonic()``.
- **FIFO waiters**: ``wait()`` holds an ``asyncio.Lock`` while sleeping, so
  callers are admitted in arrival order.
- **Cancellation** propagates: a cancelled ``wait()`` consumes no token and
  the request is never sent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class Limiter(Protocol):
    """Anything that can gate an operation. ``wait`` blocks until allowed
    and raises if the operation must not proceed."""

    async def wait(self) -> None: ...


class TokenBucketLimiter:
    """Token bucket admitting *rate* operations/sec with bursts up to *burst*."""

    def __init__(self, rate: float, burst: int = 1) -> None:
        if rate <= 0:
            raise ValueError(f"rate must be > 0, got {rate}")
        if burst <= 0:
            raise ValueError(f"burst must be > 0, got {burst}")
        self._rate = rate
        self._capacity = burst
        self._tokens = float(burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token if one is available. Never blocks."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def wait(self) -> None:
        """Block until a token is available, then take it."""
        async with self._lock:
            while not self.try_acquire():
                delay = (1 - self._tokens) / self._rate
                logger.debug("Rate limited, sleeping %.3fs", delay)
                await asyncio.sleep(delay)

    @property
    def remaining(self) -> int:
        """Whole tokens currently available (after refill)."""
        self._refill()
        return int(self._tokens)


class RateLimitedTransport(httpx.AsyncBaseTransport):
    """httpx transport that waits on *limiter* before each request.

    If *transport* is None, a default ``httpx.AsyncHTTPTransport`` is used.
    A limiter error aborts the request before it reaches *transport*.
    """

    def __init__(self, limiter: Limiter, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.limiter = limiter
        self.transport = transport if transport is not None else httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await self.limiter.wait()
        return await self.transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self.transport.aclose()


def limited_client(
    limiter: Limiter,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` whose requests go through *limiter*."""
    return httpx.AsyncClient(transport=RateLimitedTransport(limiter, transport), **kwargs)
