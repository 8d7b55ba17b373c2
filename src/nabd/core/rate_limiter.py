"""In-process fixed-window rate limiting.

:class:`RateLimiter` keeps one counter per ``(scope, key)`` pair, where
*scope* names a quota (``api``, ``write``, ``generate``) and *key* identifies
the client.  A counter belongs to a window that starts at the client's first
request; once the window has elapsed the next request starts a fresh one.

Lifecycle
---------
The limiter is a plain object created by the application factory and stored
on ``app.state``.  The FastAPI lifespan starts :meth:`RateLimiter.run_sweeper`
as a background task that evicts expired windows every few minutes, keeping
memory bounded by the number of recently active clients.  The task is
cancelled on shutdown.

Concurrency
-----------
Handlers may run on the event loop or in the threadpool, so every
check-and-increment happens under a ``threading.Lock``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    count: int


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single :meth:`RateLimiter.hit`.

    Attributes:
        allowed: Whether the request fits in the quota.
        limit: The quota that was applied.
        remaining: Requests left in the current window.
        retry_after: Whole seconds until the window resets (0 when allowed).
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class RateLimiter:
    """Thread-safe table of fixed-window request counters."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def hit(self, scope: str, key: str, limit: int, window: float) -> RateLimitResult:
        """Count one request against ``(scope, key)``.

        A rejected request is not counted, so a client that keeps retrying
        while limited does not extend its own lockout.

        Args:
            scope: Quota name.
            key: Client identifier (network address or session).
            limit: Maximum requests per window.
            window: Window length in seconds.

        Returns:
            The :class:`RateLimitResult` for this request.
        """
        now = self._clock()
        with self._lock:
            entry = self._windows.get((scope, key))
            if entry is None or now - entry.started_at >= window:
                entry = _Window(started_at=now, count=0)
                self._windows[(scope, key)] = entry

            if entry.count >= limit:
                reset_in = entry.started_at + window - now
                return RateLimitResult(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after=max(1, math.ceil(reset_in)),
                )

            entry.count += 1
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit - entry.count,
                retry_after=0,
            )

    def sweep(self, max_window: float) -> int:
        """Drop every counter whose window is older than *max_window*.

        Args:
            max_window: The longest window any quota uses.

        Returns:
            Number of evicted entries.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if now - w.started_at >= max_window]
            for k in expired:
                del self._windows[k]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired rate-limit entries")
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    async def run_sweeper(self, interval: float, max_window: float) -> None:
        """Evict expired entries every *interval* seconds until cancelled."""
        logger.info(f"Rate-limit sweeper started (every {interval:.0f}s)")
        try:
            while True:
                await asyncio.sleep(interval)
                self.sweep(max_window)
        except asyncio.CancelledError:
            logger.info("Rate-limit sweeper stopped")
            raise
