"""Per-chat state kept in memory and persisted to the snapshot."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from groupbot.utils.helpers import now_ms


class AttachmentKind(str, Enum):
    """Attachment types a chat message may carry."""

    PHOTO = "photo"
    VIDEO = "video"
    ANIMATION = "animation"
    AUDIO = "audio"
    VOICE = "voice"
    DOCUMENT = "document"
    VIDEO_NOTE = "video_note"
    CONTACT = "contact"
    LOCATION = "location"
    VENUE = "venue"
    POLL = "poll"
    DICE = "dice"
    GAME = "game"
    STICKER = "sticker"


@dataclass(frozen=True)
class Attachment:
    kind: AttachmentKind
    emoji: str | None = None

    def marker(self) -> str:
        """Inline text marker that stands in for the attachment in the transcript."""
        if self.kind is AttachmentKind.STICKER:
            return f"[Sticker {self.emoji}]" if self.emoji else "[Sticker]"
        return f"[{self.kind.value}]"


_NEWLINES_RE = re.compile(r"[\r\n]+")


def render_message_text(
    text: str | None,
    *,
    caption: str | None = None,
    attachments: list[Attachment] | None = None,
    forwarded_from: str | None = None,
) -> str:
    """
    Normalize a platform message into the single-line text stored in history.

    Stickers are inlined right after the text, other attachments are appended as
    markers, and forwards are prefixed with ``(forwarded from <name>)``.
    Returns an empty string when nothing could be extracted.
    """
    attachments = attachments or []
    body = text or ""
    for att in attachments:
        if att.kind is AttachmentKind.STICKER:
            body += att.marker()
    if caption:
        body += caption
    body = _NEWLINES_RE.sub(" ", body)

    if forwarded_from is not None and body.strip():
        body = f"(forwarded from {forwarded_from[:20]}): {body}"

    markers = "".join(f" [{a.kind.value}]" for a in attachments if a.kind is not AttachmentKind.STICKER)
    return (body + markers).strip()


@dataclass
class Sender:
    id: int
    name: str
    username: str | None = None
    myself: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Sender:
        return cls(
            id=int(data.get("id", 0)),
            name=str(data.get("name") or ""),
            username=data.get("username"),
            myself=bool(data.get("myself", False)),
        )


@dataclass
class ReplyTo:
    """Denormalized copy of the message being replied to; survives trimming of the original."""

    id: int
    text: str
    sender: Sender
    is_myself: bool = False
    media_group_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplyTo:
        return cls(
            id=int(data["id"]),
            text=str(data.get("text") or ""),
            sender=Sender.from_dict(data.get("sender") or {}),
            is_myself=bool(data.get("is_myself", False)),
            media_group_id=data.get("media_group_id"),
        )


@dataclass
class ChatMessage:
    id: int
    text: str
    sender: Sender
    reply_to: ReplyTo | None = None
    is_myself: bool = False
    date: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        reply = data.get("reply_to")
        return cls(
            id=int(data["id"]),
            text=str(data.get("text") or ""),
            sender=Sender.from_dict(data.get("sender") or {}),
            reply_to=ReplyTo.from_dict(reply) if reply else None,
            is_myself=bool(data.get("is_myself", False)),
            date=int(data.get("date", 0)),
        )


@dataclass
class Member:
    id: int
    first_name: str
    username: str | None = None
    description: str = ""
    last_use: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Member:
        return cls(
            id=int(data["id"]),
            first_name=str(data.get("first_name") or ""),
            username=data.get("username"),
            description=str(data.get("description") or ""),
            last_use=int(data.get("last_use", 0)),
        )


@dataclass
class OptOutUser:
    id: int
    first_name: str
    username: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OptOutUser:
        return cls(
            id=int(data["id"]),
            first_name=str(data.get("first_name") or ""),
            username=data.get("username"),
        )


@dataclass
class Character:
    """Persona that replaces the default system prompt for one chat."""

    name: str
    description: str
    names: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Character:
        return cls(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            names=[str(n) for n in data.get("names") or []],
        )


@dataclass
class ChatInfo:
    type: str = "group"
    title: str | None = None
    username: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatInfo:
        return cls(
            type=str(data.get("type") or "group"),
            title=data.get("title"),
            username=data.get("username"),
        )


@dataclass
class Chat:
    """One conversation's full state."""

    history: list[ChatMessage] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    members: list[Member] = field(default_factory=list)
    opt_out_users: list[OptOutUser] = field(default_factory=list)
    character: Character | None = None
    chat_model: str | None = None
    random_reply_probability: float | None = None
    info: ChatInfo = field(default_factory=ChatInfo)
    last_use: int = field(default_factory=now_ms)
    last_notes: int = 0
    last_memory: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Chat:
        character = data.get("character")
        return cls(
            history=[ChatMessage.from_dict(m) for m in data.get("history") or []],
            notes=[str(n) for n in data.get("notes") or []],
            members=[Member.from_dict(m) for m in data.get("members") or []],
            opt_out_users=[OptOutUser.from_dict(u) for u in data.get("opt_out_users") or []],
            character=Character.from_dict(character) if character else None,
            chat_model=data.get("chat_model"),
            random_reply_probability=data.get("random_reply_probability"),
            info=ChatInfo.from_dict(data.get("info") or {}),
            last_use=int(data.get("last_use", 0)),
            last_notes=int(data.get("last_notes", 0)),
            last_memory=int(data.get("last_memory", 0)),
        )


class Memory:
    """Root of all chat state, keyed by chat id."""

    def __init__(self, chats: dict[int, Chat] | None = None):
        self.chats: dict[int, Chat] = chats if chats is not None else {}

    def get_or_create(self, chat_id: int, info: ChatInfo | None = None) -> Chat:
        """Return the chat record, creating a fresh default one on first access."""
        chat = self.chats.get(chat_id)
        if chat is None:
            chat = Chat(info=info or ChatInfo())
            self.chats[chat_id] = chat
        elif info is not None:
            chat.info = info
        return chat

    def to_dict(self) -> dict[str, Any]:
        return {"chats": {str(chat_id): chat.to_dict() for chat_id, chat in self.chats.items()}}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Memory:
        chats_raw = data.get("chats")
        if not isinstance(chats_raw, dict):
            raise ValueError("snapshot has no `chats` mapping")
        return cls({int(chat_id): Chat.from_dict(chat) for chat_id, chat in chats_raw.items()})
