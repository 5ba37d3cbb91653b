"""Sliding window rate limiter for AI provider requests.

Free-tier completion endpoints enforce per-minute request caps; the
ensemble fans out to several models at once, so each provider gets its
own limiter shared by all of that provider's models.
"""

import time
import asyncio
import logging
from collections import deque
from typing import Deque

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 20
DEFAULT_TIME_WINDOW_SECONDS = 60

class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        time_window: float = DEFAULT_TIME_WINDOW_SECONDS,
        name: str = "default",
    ):
        """Initializes the rate limiter.

        Args:
            max_requests: Maximum number of requests allowed in the time window.
            time_window: The time window in seconds.
            name: Label used in log messages (usually the provider name).
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.time_window = time_window
        self.name = name
        self.timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()
        logger.debug(f"RateLimiter '{name}' initialized: {max_requests} requests / {time_window} seconds")

    def _cleanup_timestamps(self) -> None:
        """Removes timestamps older than the time window."""
        now = time.monotonic()
        while self.timestamps and now - self.timestamps[0] > self.time_window:
            self.timestamps.popleft()

    async def wait_for_permission(self) -> None:
        """Waits until a request is permitted according to the rate limit."""
        while True:
            async with self._lock:
                self._cleanup_timestamps()
                if len(self.timestamps) < self.max_requests:
                    self.timestamps.append(time.monotonic())
                    return
                wait_time = max(0.0, self.timestamps[0] + self.time_window - time.monotonic())

            if wait_time > 0:
                logger.debug(f"Rate limit '{self.name}' reached. Waiting for {wait_time:.2f} seconds.")
                await asyncio.sleep(wait_time)

    async def get_wait_time(self) -> float:
        """Estimates the time needed before the next request can be made."""
        async with self._lock:
            self._cleanup_timestamps()
            if len(self.timestamps) < self.max_requests:
                return 0.0
            return max(0.0, self.timestamps[0] + self.time_window - time.monotonic())
