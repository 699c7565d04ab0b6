"""Chat memory: data model, per-chat accessor and snapshot store."""

from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import (
    Attachment,
    AttachmentKind,
    Character,
    Chat,
    ChatInfo,
    ChatMessage,
    Member,
    Memory,
    OptOutUser,
    ReplyTo,
    Sender,
)
from groupbot.memory.store import MemoryStore

__all__ = [
    "Attachment",
    "AttachmentKind",
    "Character",
    "Chat",
    "ChatInfo",
    "ChatMemory",
    "ChatMessage",
    "Member",
    "Memory",
    "MemoryStore",
    "OptOutUser",
    "ReplyTo",
    "Sender",
]
