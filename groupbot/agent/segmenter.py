"""Split a model response into chat messages and deliver them one by one."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import json_repair

from groupbot.channels.base import BaseChannel
from groupbot.channels.events import OutboundMessage
from groupbot.config.schema import DeliveryConfig
from groupbot.errors import DeliveryError
from groupbot.logging import get_logger
from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import ChatMessage, ReplyTo, Sender

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
_BULLET_RE = re.compile(r"^\* ", re.MULTILINE)
_HEADER_LINE_RE = re.compile(r"^.*\)\s*:\s*$")
_EMOJI_RE = re.compile(
    "[\u2100-\u27bf\u2b00-\u2bff\u3030\u303d\u3297\u3299\ufe0f\u200d\U0001f000-\U0001fbff]"
)
_CLOSING = {"[": "]", "{": "}"}


@dataclass
class Segment:
    """One message of a multi-part answer; ``reply_to`` is a username hint."""

    text: str
    reply_to: str | None = None


def _segment_from(item: Any) -> Segment | None:
    if isinstance(item, str):
        return Segment(item)
    if isinstance(item, dict):
        text = item.get("text")
        reply_to = item.get("reply_to") or item.get("replyTo")
        return Segment(
            text="" if text is None else str(text),
            reply_to=str(reply_to) if reply_to else None,
        )
    return None


def parse_segments(content: str | None) -> list[Segment]:
    """
    Parse a model response into segments.

    Accepts a JSON array of ``{"text", "reply_to"}`` objects (or plain strings),
    an object with a ``messages`` array, a single ``{"text"}`` object, or free
    text. Broken JSON is repaired only when the body is bracketed on both
    ends, so prose such as ``[laughs] see you`` stays a single free-text
    segment, as does anything that does not parse into one of those shapes.
    """
    raw = (content or "").strip()
    fenced = _FENCE_RE.match(raw)
    body = fenced.group(1) if fenced else raw
    if not body or body[0] not in _CLOSING:
        return [Segment(raw)]

    try:
        data = json.loads(body)
    except ValueError:
        if not body.endswith(_CLOSING[body[0]]):
            return [Segment(raw)]
        try:
            data = json_repair.loads(body)
        except (ValueError, TypeError) as e:
            logger.debug("segments_unparseable", error=str(e))
            return [Segment(raw)]

    if isinstance(data, dict):
        if isinstance(data.get("messages"), list):
            data = data["messages"]
        elif "text" in data:
            data = [data]
    if not isinstance(data, list) or not data:
        return [Segment(raw)]

    segments = [s for s in (_segment_from(item) for item in data) if s is not None]
    return segments or [Segment(raw)]


def remove_bot_name(response: str, name: str, username: str | None = None) -> str:
    """Strip a leading ``Name (@username):`` or ``Name:`` the model may echo from the transcript format."""
    if not name:
        return response
    pattern = re.escape(name)
    if username:
        pattern += r"(?:\s*\(@" + re.escape(username) + r"\))?"
    return re.sub(r"^\s*" + pattern + r"\s*:\s*", "", response, count=1, flags=re.IGNORECASE)


def strip_emoji(text: str) -> str:
    """Remove emoji and pictographs unless nothing but whitespace would be left."""
    stripped = _EMOJI_RE.sub("", text)
    return stripped if stripped.strip() else text


def drop_header_line(text: str) -> str:
    """Drop a first line ending in ``):``, an echoed ``Name (@username):`` transcript header."""
    first, sep, rest = text.partition("\n")
    if _HEADER_LINE_RE.match(first):
        logger.info("reply_header_line_dropped", line=first)
        return rest
    return text


def clean_reply(text: str, name: str, username: str | None = None) -> str:
    """Post-process one segment of model output before it is sent."""
    text = remove_bot_name(text.strip(), name, username)
    text = drop_header_line(strip_emoji(text))
    return text.strip()


def normalize_bullets(text: str) -> str:
    """Telegram Markdown renders ``* `` as bold markers, so list items use ``- ``."""
    return _BULLET_RE.sub("- ", text)


@dataclass
class DeliveryReport:
    sent: list[ChatMessage] = field(default_factory=list)
    empty_segment: bool = False

    @property
    def delivered(self) -> bool:
        return bool(self.sent)


class DeliverySequencer:
    """
    Sends segments in order, chaining replies and pacing them like typing.

    Each delivered segment is appended to the chat history as the bot's own
    message together with a snapshot of the message it answers.
    """

    def __init__(
        self,
        channel: BaseChannel,
        config: DeliveryConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.channel = channel
        self.config = config
        self._sleep = sleep

    def typing_delay(self, text: str) -> float:
        if self.config.symbols_per_minute <= 0:
            return 0.0
        return min(len(text) / self.config.symbols_per_minute * 60, self.config.max_typing_delay)

    @staticmethod
    def resolve_target(
        hint: str | None,
        snapshot: list[ChatMessage],
        hidden_ids: frozenset[int] = frozenset(),
    ) -> ChatMessage | None:
        """Most recent snapshot message by the user named in *hint*, never an opted-out one."""
        if not hint:
            return None
        username = hint.strip().lstrip("@").lower()
        if not username:
            return None
        for message in reversed(snapshot):
            if message.is_myself or message.sender.id in hidden_ids:
                continue
            if message.sender.username and message.sender.username.lower() == username:
                return message
        return None

    async def deliver(
        self,
        chat_id: int,
        segments: list[Segment],
        chat_memory: ChatMemory,
        snapshot: list[ChatMessage],
        bot: Sender,
        hidden_ids: frozenset[int] = frozenset(),
    ) -> DeliveryReport:
        """
        Deliver *segments* into *chat_id*.

        An empty segment ends the batch. Raises DeliveryError when the channel
        rejects a message; segments sent before that stay in history.
        """
        report = DeliveryReport()
        previous: ChatMessage | None = None

        for index, segment in enumerate(segments):
            text = segment.text.strip()
            if not text:
                report.empty_segment = True
                logger.debug("segment_empty", index=index, delivered=len(report.sent))
                break
            text = normalize_bullets(text)

            target = self.resolve_target(segment.reply_to, snapshot, hidden_ids) or previous
            try:
                sent = await self.channel.send(
                    OutboundMessage(
                        chat_id=chat_id,
                        content=text,
                        reply_to_message_id=target.id if target is not None else None,
                    )
                )
            except DeliveryError:
                logger.warning("segment_delivery_failed", index=index, delivered=len(report.sent))
                raise

            message = ChatMessage(
                id=sent.message_id,
                text=text,
                sender=Sender(id=bot.id, name=bot.name, username=bot.username, myself=True),
                reply_to=(
                    ReplyTo(id=target.id, text=target.text, sender=target.sender, is_myself=target.is_myself)
                    if target is not None
                    else None
                ),
                is_myself=True,
                date=sent.date,
            )
            chat_memory.add_message(message)
            report.sent.append(message)
            previous = message

            if index + 1 < len(segments):
                delay = self.typing_delay(segments[index + 1].text.strip())
                if delay > 0:
                    async with self.channel.typing(chat_id):
                        await self._sleep(delay)

        logger.debug("segments_delivered", count=len(report.sent), total=len(segments))
        return report
