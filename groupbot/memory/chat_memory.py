"""Per-chat view over the shared memory."""

from __future__ import annotations

from typing import Callable

from groupbot.memory.models import Chat, ChatInfo, ChatMessage, Member, Memory, OptOutUser, Sender
from groupbot.utils.helpers import now_ms

_DAY_MS = 1000 * 60 * 60 * 24


class ChatMemory:
    """
    Operations on one chat's state, bound to a ``(Memory, chat_id)`` pair.

    Cheap to construct; a fresh instance is created for every inbound update.
    """

    def __init__(
        self,
        memory: Memory,
        chat_id: int,
        info: ChatInfo | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.memory = memory
        self.chat_id = chat_id
        self.info = info
        self._clock = clock

    def get_chat(self) -> Chat:
        return self.memory.get_or_create(self.chat_id, self.info)

    def get_history(self) -> list[ChatMessage]:
        return self.get_chat().history

    def get_last_message(self) -> ChatMessage | None:
        history = self.get_history()
        return history[-1] if history else None

    def clear(self) -> None:
        """Forget the conversation; notes and members are kept."""
        chat = self.get_chat()
        chat.history = []
        chat.last_notes = 0

    def add_message(self, message: ChatMessage) -> None:
        self.get_history().append(message)

    def remove_old_messages(self, max_length: int) -> None:
        """Drop the oldest ``max_length`` messages once the history grows past ``max_length``."""
        history = self.get_history()
        if len(history) > max_length:
            del history[:max_length]

    def remove_old_notes(self, max_length: int) -> None:
        """Same pruning policy as :meth:`remove_old_messages`, applied to notes."""
        notes = self.get_chat().notes
        if len(notes) > max_length:
            del notes[:max_length]

    def touch(self) -> None:
        chat = self.get_chat()
        chat.last_use = max(chat.last_use, self._clock())

    def update_user(self, user: Sender) -> Member:
        """Insert or refresh the roster entry for *user*."""
        chat = self.get_chat()
        for index, existing in enumerate(chat.members):
            if existing.id == user.id:
                member = Member(
                    id=user.id,
                    first_name=user.name,
                    username=user.username,
                    description=existing.description,
                    last_use=max(existing.last_use, self._clock()),
                )
                chat.members[index] = member
                return member

        member = Member(id=user.id, first_name=user.name, username=user.username, last_use=self._clock())
        chat.members.append(member)
        return member

    def get_active_members(self, days: int = 7, limit: int = 10) -> list[Member]:
        """Members seen within the last *days*, in roster order, at most *limit*."""
        cutoff = self._clock() - _DAY_MS * days
        active = [m for m in self.get_chat().members if m.last_use >= cutoff]
        return active[:limit]

    def opt_out(self, user: Sender) -> bool:
        """Exclude *user* from being referenced; returns False if already opted out."""
        if self.is_opted_out(user.id):
            return False
        self.get_chat().opt_out_users.append(
            OptOutUser(id=user.id, first_name=user.name, username=user.username)
        )
        return True

    def opt_in(self, user_id: int) -> bool:
        chat = self.get_chat()
        before = len(chat.opt_out_users)
        chat.opt_out_users = [u for u in chat.opt_out_users if u.id != user_id]
        return len(chat.opt_out_users) != before

    def is_opted_out(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.get_chat().opt_out_users)

    def opted_out_ids(self) -> set[int]:
        return {u.id for u in self.get_chat().opt_out_users}
