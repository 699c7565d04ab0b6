"""Chat channels (messaging gateways)."""

from groupbot.channels.base import BaseChannel
from groupbot.channels.events import InboundMessage, OutboundMessage, SentMessage
from groupbot.channels.ratelimit import RateLimiter

__all__ = ["BaseChannel", "InboundMessage", "OutboundMessage", "RateLimiter", "SentMessage"]
