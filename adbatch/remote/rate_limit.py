"""
Client-side rate limiting for remote platform calls.

The worker pool bounds how many calls are outstanding at once; this module
bounds how many are started per time window, so a large batch does not trip
the platform's own throttling.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from adbatch.batches.models import AppliedChange, EntityRef, ProposedChange, StateSnapshot
from adbatch.remote.client import RemoteMutationClient

logger = logging.getLogger(__name__)

class RateLimiter:
    """Sliding-window limiter shared by all workers of a client."""

    def __init__(self, max_requests: int = 10, window_seconds: float = 1.0):
        """
        Initialize the limiter.

        Args:
            max_requests: Maximum number of requests allowed in the window
            window_seconds: Time window in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._timestamps: Deque[float] = deque()
        self._lock: Optional[asyncio.Lock] = None

    async def acquire(self) -> None:
        """Wait until a request may be started, then record it."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()

            # Remove old timestamps
            while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
                self._timestamps.popleft()

            if len(self._timestamps) >= self.max_requests:
                wait_time = self.window_seconds - (now - self._timestamps[0])
                if wait_time > 0:
                    logger.warning(f"Rate limit reached, waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)
                self._timestamps.popleft()
                now = loop.time()

            self._timestamps.append(now)

class RateLimitedClient(RemoteMutationClient):
    """Wraps another client and rate limits every remote call."""

    def __init__(self, client: RemoteMutationClient, limiter: RateLimiter):
        self.client = client
        self.limiter = limiter

    async def read_current_state(self, entity: EntityRef, change: ProposedChange) -> StateSnapshot:
        await self.limiter.acquire()
        return await self.client.read_current_state(entity, change)

    async def apply_change(self, entity: EntityRef, change: ProposedChange) -> AppliedChange:
        await self.limiter.acquire()
        return await self.client.apply_change(entity, change)

    async def apply_inverse(self, entity: EntityRef, previous_state: StateSnapshot) -> AppliedChange:
        await self.limiter.acquire()
        return await self.client.apply_inverse(entity, previous_state)

    async def close(self) -> None:
        await self.client.close()
