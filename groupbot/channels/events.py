"""Event types passed between channels and the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field

from groupbot.memory.models import Attachment, ChatInfo, ReplyTo, Sender


@dataclass
class InboundMessage:
    """Message received from a chat platform, already normalized."""

    chat_id: int
    message_id: int
    sender: Sender
    chat: ChatInfo
    text: str = ""
    reply_to: ReplyTo | None = None
    attachments: list[Attachment] = field(default_factory=list)
    forward_from_id: int | None = None  # user id of the forward origin, when it is a user
    via_self: bool = False
    date: int = 0

    @property
    def is_private(self) -> bool:
        return self.chat.type == "private"

    @property
    def command(self) -> str | None:
        """Lower-cased command name for ``/cmd`` or ``/cmd@bot`` messages."""
        if not self.text.startswith("/"):
            return None
        head = self.text.split(maxsplit=1)[0][1:]
        name = head.split("@", 1)[0].lower()
        return name or None

    @property
    def command_args(self) -> list[str]:
        return [arg for arg in self.text.split()[1:] if arg.strip()]


@dataclass
class OutboundMessage:
    """Text reply to send into a chat."""

    chat_id: int
    content: str
    reply_to_message_id: int | None = None


@dataclass
class SentMessage:
    """What the platform reports back after a successful send."""

    message_id: int
    date: int = 0
