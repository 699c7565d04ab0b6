"""Sliding window rate limiter keyed per chat (groups) or per user (private chats)."""

from __future__ import annotations

import time
from collections import deque

from groupbot.channels.events import InboundMessage


def rate_limit_key(msg: InboundMessage) -> str:
    """Group chats share one bucket; private chats are limited per sender."""
    if msg.is_private:
        return f"user:{msg.sender.id}"
    return f"chat:{msg.chat_id}"


class RateLimiter:
    """Sliding window rate limiter using per-key timestamp deques.

    Args:
        max_messages: Maximum messages allowed within the window.
        window_seconds: Sliding window size in seconds.
    """

    def __init__(self, max_messages: int = 1, window_seconds: float = 2.0) -> None:
        self.max_messages = max_messages
        self.window_seconds = window_seconds
        self._buckets: dict[str, deque[float]] = {}
        self._last_cleanup = time.monotonic()

    def is_allowed(self, key: str) -> bool:
        """Return True and record a hit if *key* is still under the limit."""
        now = time.monotonic()

        if now - self._last_cleanup > self.window_seconds * 2:
            self._cleanup(now)

        bucket = self._buckets.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()

        if len(bucket) >= self.max_messages:
            return False

        bucket.append(now)
        return True

    def allows(self, msg: InboundMessage) -> bool:
        return self.is_allowed(rate_limit_key(msg))

    def _cleanup(self, now: float) -> None:
        """Forget keys idle for more than twice the window."""
        cutoff = now - self.window_seconds * 2
        for key in [k for k, dq in self._buckets.items() if not dq or dq[-1] <= cutoff]:
            del self._buckets[key]
        self._last_cleanup = now
