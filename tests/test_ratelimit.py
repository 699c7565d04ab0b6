"""Tests for per-chat / per-user rate limiting."""

from __future__ import annotations

import time

from groupbot.channels.ratelimit import RateLimiter, rate_limit_key
from groupbot.memory.models import Sender

from conftest import make_msg


class TestRateLimiter:
    def test_allows_under_limit(self):
        rl = RateLimiter(max_messages=5, window_seconds=60)
        for _ in range(5):
            assert rl.is_allowed("chat:1") is True

    def test_blocks_over_limit(self):
        rl = RateLimiter(max_messages=3, window_seconds=60)
        for _ in range(3):
            assert rl.is_allowed("chat:1") is True
        assert rl.is_allowed("chat:1") is False

    def test_different_keys_independent(self):
        rl = RateLimiter(max_messages=1, window_seconds=60)
        assert rl.is_allowed("a") is True
        assert rl.is_allowed("a") is False
        assert rl.is_allowed("b") is True

    def test_window_expiry(self, monkeypatch):
        """After the window passes, the key is allowed again."""
        fake_time = [100.0]
        monkeypatch.setattr(time, "monotonic", lambda: fake_time[0])

        rl = RateLimiter(max_messages=1, window_seconds=2)
        assert rl.is_allowed("chat:1") is True
        assert rl.is_allowed("chat:1") is False

        fake_time[0] = 102.5
        assert rl.is_allowed("chat:1") is True

    def test_cleanup_removes_stale_keys(self, monkeypatch):
        fake_time = [100.0]
        monkeypatch.setattr(time, "monotonic", lambda: fake_time[0])

        rl = RateLimiter(max_messages=10, window_seconds=10)
        rl.is_allowed("stale")
        assert "stale" in rl._buckets

        fake_time[0] = 125.0
        rl.is_allowed("active")

        assert "stale" not in rl._buckets
        assert "active" in rl._buckets


class TestRateLimitKey:
    def test_group_messages_share_chat_bucket(self):
        a = make_msg("hi", sender=Sender(id=1, name="A"))
        b = make_msg("hi", sender=Sender(id=2, name="B"))
        assert rate_limit_key(a) == rate_limit_key(b) == "chat:42"

    def test_private_messages_are_per_user(self):
        msg = make_msg("hi", chat_type="private", sender=Sender(id=5, name="E"))
        assert rate_limit_key(msg) == "user:5"

    def test_allows_uses_message_key(self):
        rl = RateLimiter(max_messages=1, window_seconds=60)
        assert rl.allows(make_msg("one")) is True
        assert rl.allows(make_msg("two", sender=Sender(id=9, name="Z"))) is False
