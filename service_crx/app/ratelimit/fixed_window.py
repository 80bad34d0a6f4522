"""
Fixed-window rate limiter for the fetch proxy.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request

from shared.logging import get_logger
from shared.metrics import MetricsCollector

UNKNOWN_CALLER = "unknown"


@dataclass
class RateLimitEntry:
    """Request count for one caller key within its current window."""

    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    reset_in_seconds: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimitStore:
    """In-process map of caller key to :class:`RateLimitEntry`.

    All reads and writes go through one lock, held only for the duration of
    a single increment or a bounded batch of sweep deletions, so request
    threads and the event loop can share the store safely. Entries live
    until swept; the store itself lives as long as the service that owns it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[RateLimitEntry]:
        with self._lock:
            entry = self._entries.get(key)
            return RateLimitEntry(entry.count, entry.window_reset_at) if entry else None

    def increment(self, key: str, window_seconds: float) -> RateLimitEntry:
        """Count one request for ``key``, opening a new window if needed.

        Returns a snapshot of the entry after the update.
        """
        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)
            if entry is None or now > entry.window_reset_at:
                entry = RateLimitEntry(count=1, window_reset_at=now + window_seconds)
                self._entries[key] = entry
            else:
                entry.count += 1
            return RateLimitEntry(entry.count, entry.window_reset_at)

    def sweep_batch(self, keys) -> int:
        """Delete the expired entries among ``keys``; return how many went.

        Expiry is re-checked under the lock so a key reopened by a
        concurrent request after the caller took its snapshot survives.
        """
        removed = 0
        with self._lock:
            now = self.clock()
            for key in keys:
                entry = self._entries.get(key)
                if entry is not None and now > entry.window_reset_at:
                    del self._entries[key]
                    removed += 1
        return removed

    async def sweep_expired(self, batch_size: int = 256) -> int:
        """Remove every expired entry, yielding to the event loop between batches."""
        with self._lock:
            keys = list(self._entries)

        removed = 0
        for start in range(0, len(keys), batch_size):
            removed += self.sweep_batch(keys[start:start + batch_size])
            await asyncio.sleep(0)
        return removed


class FixedWindowRateLimiter:
    """Allow ``limit`` requests per caller key in each fixed window."""

    def __init__(self, store: RateLimitStore, limit: int = 5, window_seconds: float = 60.0,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.metrics = metrics
        self.logger = get_logger("crx.rate_limiter")
        self._sweeper: Optional[asyncio.Task] = None

    def check_and_record(self, caller_key: str) -> RateLimitDecision:
        entry = self.store.increment(caller_key, self.window_seconds)
        decision = RateLimitDecision(
            allowed=entry.count <= self.limit,
            count=entry.count,
            limit=self.limit,
            reset_in_seconds=max(0.0, entry.window_reset_at - self.store.clock()),
        )
        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                caller_key=caller_key,
                current_count=entry.count,
                limit=self.limit,
            )
        return decision

    async def sweep_once(self) -> int:
        removed = await self.store.sweep_expired()
        if self.metrics:
            self.metrics.set_gauge("rate_limit_entries", len(self.store))
        if removed:
            self.logger.debug("Expired rate limit entries removed", removed=removed)
        return removed

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.window_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                self.logger.error("Rate limit sweep failed", error=str(e))

    def start_sweeper(self) -> None:
        """Start the background expiry task on the running loop."""
        if self.sweeper_running:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._run_sweeper())

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()


def get_caller_key(request: Request) -> str:
    """Left-most X-Forwarded-For address, or the shared ``unknown`` bucket.

    Callers without the header all share one counter; there is no fallback
    to the socket peer address.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return UNKNOWN_CALLER
