from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import pytest

from groupbot.channels.base import BaseChannel
from groupbot.channels.events import InboundMessage, OutboundMessage, SentMessage
from groupbot.config.schema import Config
from groupbot.errors import DeliveryError
from groupbot.memory.models import ChatInfo, ReplyTo, Sender

BOT = Sender(id=999, name="BotName", username="BotName", myself=True)


class FakeChannel(BaseChannel):
    """In-memory channel that records what would have been sent."""

    name = "fake"

    def __init__(self, bot: Sender = BOT, fail_after: int | None = None):
        super().__init__(config=None)
        self.bot_user = bot
        self.sent: list[OutboundMessage] = []
        self.typing_chats: list[int] = []
        self.fail_after = fail_after
        self._next_id = 1000

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send(self, msg: OutboundMessage) -> SentMessage:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise DeliveryError("chat not found")
        self.sent.append(msg)
        self._next_id += 1
        return SentMessage(message_id=self._next_id, date=1_700_000_000)

    @asynccontextmanager
    async def typing(self, chat_id: int) -> AsyncIterator[None]:
        self.typing_chats.append(chat_id)
        yield


def make_msg(
    text: str,
    *,
    chat_id: int = 42,
    message_id: int = 1,
    sender: Sender | None = None,
    chat_type: str = "group",
    reply_to: ReplyTo | None = None,
    forward_from_id: int | None = None,
    via_self: bool = False,
    attachments: list | None = None,
) -> InboundMessage:
    return InboundMessage(
        chat_id=chat_id,
        message_id=message_id,
        sender=sender or Sender(id=1, name="Alice", username="alice"),
        chat=ChatInfo(type=chat_type, title="Friends"),
        text=text,
        reply_to=reply_to,
        attachments=attachments or [],
        forward_from_id=forward_from_id,
        via_self=via_self,
        date=1_700_000_000,
    )


def quiet_config(**overrides) -> Config:
    """Config with every probabilistic branch switched off."""
    data = {
        "names": ["Bot", "Botty"],
        "adminIds": [7],
        "reply": {
            "tendToReplyProbability": 0,
            "tendToIgnoreProbability": 0,
            "randomReplyProbability": 0,
        },
    }
    data.update(overrides)
    return Config.model_validate(data)


@pytest.fixture
def config() -> Config:
    return quiet_config()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()
