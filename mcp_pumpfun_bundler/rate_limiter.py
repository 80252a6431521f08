"""
Per-Requester Rate Limiting

This module limits how many trading requests one requester may issue per minute, so a
single user of the agent cannot flood the relay with bundles.

Rate Limiting Algorithm:
- Sliding 60-second window per requester ID
- Tracks request count and first request timestamp per requester
- Resets the counter when the window expires
- Old entries are evicted once the table grows past a fixed size

Each server instance owns one RateLimiter; nothing is kept at module level.
"""
import time
from collections import OrderedDict
from typing import Callable, Tuple

from mcp_pumpfun_bundler.config import RATE_LIMIT_PER_MINUTE
from mcp_pumpfun_bundler.errors import RateLimitExceededError
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60
MAX_TRACKED_REQUESTERS = 1000


class RateLimiter:
    def __init__(self, limit: int = RATE_LIMIT_PER_MINUTE, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.clock = clock
        # {requester_id: (count, first_request_timestamp_in_window)}
        self.entries: "OrderedDict[str, Tuple[int, int]]" = OrderedDict()

    def check(self, requester_id: str) -> bool:
        """
        Records a request and reports whether it is within the limit.

        Returns:
            True if the request is allowed, False if the limit is exceeded.
        """
        now = int(self.clock())

        if len(self.entries) > MAX_TRACKED_REQUESTERS:
            self.cleanup_old_entries(now - WINDOW_SECONDS)

        if requester_id in self.entries:
            count, timestamp = self.entries[requester_id]
            if now - timestamp >= WINDOW_SECONDS:
                self.entries[requester_id] = (1, now)
                self.entries.move_to_end(requester_id)
                logger.debug(f"Rate limit window reset for requester: {requester_id}")
                return True
            if count >= self.limit:
                logger.warning(f"Rate limit exceeded for requester: {requester_id}. Count: {count}, Limit: {self.limit}")
                return False
            self.entries[requester_id] = (count + 1, timestamp)
            self.entries.move_to_end(requester_id)
            return True

        self.entries[requester_id] = (1, now)
        self.entries.move_to_end(requester_id)
        return True

    def enforce(self, requester_id: str) -> None:
        if not self.check(requester_id):
            raise RateLimitExceededError(f"Rate limit exceeded for requester: {requester_id}")

    def cleanup_old_entries(self, cutoff_time: int) -> None:
        """Removes entries whose window started before ``cutoff_time``."""
        to_remove = [key for key, (_, timestamp) in self.entries.items() if timestamp < cutoff_time]
        for key in to_remove:
            del self.entries[key]
        if to_remove:
            logger.debug(f"Cleaned up {len(to_remove)} old rate limit entries")
