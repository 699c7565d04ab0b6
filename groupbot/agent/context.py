"""Context builder: turns chat history into a bounded prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from groupbot.config.schema import Config
from groupbot.logging import get_logger
from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import Chat, ChatMessage, Member, Sender
from groupbot.utils.helpers import slice_message

logger = get_logger(__name__)

# Lazy-loaded tiktoken encoder; None if the encoding cannot be loaded.
_tiktoken_encoder: Any = None
_tiktoken_loaded: bool = False

_HIDDEN_NAME = "hidden"


def _get_encoder() -> Any:
    """Return a tiktoken encoder, or None if the BPE file is unavailable (e.g. offline)."""
    global _tiktoken_encoder, _tiktoken_loaded
    if _tiktoken_loaded:
        return _tiktoken_encoder
    _tiktoken_loaded = True
    try:
        import tiktoken
        # cl100k_base is close enough for Gemini / Claude estimates.
        _tiktoken_encoder = tiktoken.get_encoding("cl100k_base")
    except Exception:
        _tiktoken_encoder = None
    return _tiktoken_encoder


def count_tokens(text: str) -> int:
    """Count tokens in *text*. Falls back to a char/4 estimate when no encoder is available."""
    enc = _get_encoder()
    if enc is not None:
        return len(enc.encode(text))
    return max(1, len(text) // 4)


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


@dataclass
class ContextLimits:
    """Caps applied while building the transcript."""

    messages_limit: int = 30
    bytes_limit: int = 32_000
    symbol_limit: int = 1000


@dataclass
class BuiltContext:
    """Prompt ready for the provider plus the bookkeeping needed to interpret the reply."""

    messages: list[dict[str, Any]]
    transcript: str
    included: list[ChatMessage] = field(default_factory=list)
    estimated_tokens: int = 0


class ContextBuilder:
    """
    Builds the prompt for one turn.

    The prompt is an ordered list of role-tagged blocks: the persona (system),
    chat notes (system, optional), active members (system, optional), the
    rendered transcript (user) and the final instruction (user).

    The transcript is a run of lines ``Name (@username): text`` taken from the
    newest end of the history. Lines are added newest-first until the byte
    budget left over by the fixed blocks is used up, so the result is always
    the most recent contiguous part of the conversation.
    """

    def __init__(self, config: Config):
        self.config = config

    def default_limits(self) -> ContextLimits:
        ai = self.config.ai
        return ContextLimits(
            messages_limit=ai.messages_to_pass,
            bytes_limit=ai.bytes_limit,
            symbol_limit=ai.message_max_length,
        )

    @staticmethod
    def _display(sender: Sender, hidden_ids: frozenset[int]) -> tuple[str, str | None]:
        if sender.id in hidden_ids:
            return _HIDDEN_NAME, None
        return sender.name, sender.username

    def render_message(
        self,
        message: ChatMessage,
        *,
        is_last: bool,
        symbol_limit: int,
        hidden_ids: frozenset[int] = frozenset(),
    ) -> str:
        """Render one history entry as a single transcript line (without the newline)."""
        name, username = self._display(message.sender, hidden_ids)
        line = f"{name} (@{username}): " if username else f"{name}: "

        reply = message.reply_to
        if reply is not None and not message.sender.myself:
            reply_name, _ = self._display(reply.sender, hidden_ids)
            if is_last:
                reply_text = slice_message(reply.text.replace("\n", " "), symbol_limit)
                line += f'(in reply to: {reply_name} > "{reply_text}"): '
            else:
                line += f"(in reply to: {reply_name}): "

        text = " ".join(message.text.splitlines())
        return line + slice_message(text, symbol_limit)

    def fit_transcript(
        self,
        history: list[ChatMessage],
        limits: ContextLimits,
        byte_budget: int,
        hidden_ids: frozenset[int] = frozenset(),
    ) -> tuple[str, list[ChatMessage]]:
        """
        Render the newest messages that fit into *byte_budget*.

        Returns the transcript and the messages it contains, both chronological.
        """
        window = [m for m in history[-limits.messages_limit:] if m.text] if limits.messages_limit > 0 else []
        lines: list[str] = []
        included: list[ChatMessage] = []
        used = 0
        for i in range(len(window) - 1, -1, -1):
            line = self.render_message(
                window[i],
                is_last=(i == len(window) - 1),
                symbol_limit=limits.symbol_limit,
                hidden_ids=hidden_ids,
            ) + "\n"
            size = _byte_len(line)
            if used + size > byte_budget:
                break
            used += size
            lines.append(line)
            included.append(window[i])

        lines.reverse()
        included.reverse()
        if len(included) < len(window):
            logger.debug(
                "transcript_truncated",
                window=len(window),
                included=len(included),
                byte_budget=byte_budget,
            )
        return "".join(lines), included

    def build_system_prompt(self, chat: Chat) -> str:
        """Persona prompt: the chat's character when set, the configured prompt otherwise."""
        character = chat.character
        if character is None:
            return self.config.ai.prompt
        aliases = ", ".join(n for n in character.names if n != character.name)
        prompt = f"You are {character.name}."
        if aliases:
            prompt += f" People also call you {aliases}."
        return f"{prompt}\n\n{character.description}".strip()

    @staticmethod
    def build_notes_block(notes: list[str]) -> str | None:
        if not notes:
            return None
        return "Notes about this chat so far:\n" + "\n".join(f"- {n}" for n in notes)

    @staticmethod
    def build_members_block(members: list[Member], hidden_ids: frozenset[int]) -> str | None:
        visible = [m for m in members if m.id not in hidden_ids]
        if not visible:
            return None
        lines = []
        for m in visible:
            line = f"- {m.first_name} (@{m.username})" if m.username else f"- {m.first_name}"
            if m.description:
                line += f": {m.description}"
            lines.append(line)
        return "Active chat members:\n" + "\n".join(lines)

    def build(self, chat_memory: ChatMemory, limits: ContextLimits | None = None) -> BuiltContext:
        """Assemble the full prompt for *chat_memory*'s chat."""
        limits = limits or self.default_limits()
        chat = chat_memory.get_chat()
        hidden_ids = (
            frozenset(chat_memory.opted_out_ids()) if self.config.memory.respect_opt_out else frozenset()
        )

        head: list[dict[str, Any]] = [{"role": "system", "content": self.build_system_prompt(chat)}]
        notes_block = self.build_notes_block(chat.notes)
        if notes_block:
            head.append({"role": "system", "content": notes_block})
        members_block = self.build_members_block(
            chat_memory.get_active_members(
                days=self.config.memory.active_member_days,
                limit=self.config.memory.active_member_limit,
            ),
            hidden_ids,
        )
        if members_block:
            head.append({"role": "system", "content": members_block})
        tail: list[dict[str, Any]] = [{"role": "user", "content": self.config.ai.final_prompt}]

        fixed_bytes = sum(_byte_len(block["content"]) for block in head + tail)
        budget = max(0, limits.bytes_limit - fixed_bytes)
        transcript, included = self.fit_transcript(chat.history, limits, budget, hidden_ids)
        if not included and chat.history:
            logger.warning("transcript_empty_after_budget", bytes_limit=limits.bytes_limit, fixed_bytes=fixed_bytes)

        messages = [*head, {"role": "user", "content": transcript}, *tail]
        estimated = sum(count_tokens(m["content"]) for m in messages)
        logger.debug(
            "context_built",
            blocks=len(messages),
            transcript_messages=len(included),
            transcript_bytes=_byte_len(transcript),
            estimated_tokens=estimated,
        )
        return BuiltContext(messages=messages, transcript=transcript, included=included, estimated_tokens=estimated)
