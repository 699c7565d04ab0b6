"""Background summaries of chat history, stored as chat notes."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from groupbot.agent.context import ContextBuilder, ContextLimits
from groupbot.config.schema import Config
from groupbot.logging import get_logger
from groupbot.memory.chat_memory import ChatMemory
from groupbot.providers.base import LLMProvider
from groupbot.utils.helpers import now_ms

logger = get_logger(__name__)

_HOUR_MS = 1000 * 60 * 60


class NotesSummarizer:
    """Tracks in-flight summaries so that each chat has at most one running."""

    def __init__(
        self,
        config: Config,
        provider: LLMProvider,
        context: ContextBuilder | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.provider = provider
        self.context = context or ContextBuilder(config)
        self._clock = clock
        self.in_progress: set[int] = set()
        self.tasks: dict[int, asyncio.Task[Any]] = {}

    def is_due(self, chat_memory: ChatMemory) -> bool:
        chat = chat_memory.get_chat()
        interval_ms = self.config.memory.notes_interval_hours * _HOUR_MS
        return (
            self._clock() - chat.last_notes >= interval_ms
            and len(chat.history) >= self.config.memory.notes_min_messages
        )

    def maybe_schedule(self, chat_memory: ChatMemory) -> asyncio.Task[Any] | None:
        """Start a background summary for the chat if one is due and none is running."""
        chat_id = chat_memory.chat_id
        if chat_id in self.in_progress or not self.is_due(chat_memory):
            return None

        self.in_progress.add(chat_id)

        async def _runner() -> None:
            try:
                await self.summarize(chat_memory)
            except Exception as e:
                logger.exception("notes_summary_errored", chat_id=chat_id, error_type=type(e).__name__)
            finally:
                self.in_progress.discard(chat_id)
                self.tasks.pop(chat_id, None)

        task = asyncio.create_task(_runner())
        self.tasks[chat_id] = task
        logger.debug("notes_summary_scheduled", chat_id=chat_id)
        return task

    async def summarize(self, chat_memory: ChatMemory) -> str | None:
        """Summarize the current history into a new note; returns it, or None on failure."""
        chat = chat_memory.get_chat()
        hidden_ids = (
            frozenset(chat_memory.opted_out_ids()) if self.config.memory.respect_opt_out else frozenset()
        )
        prompt = self.config.ai.notes_prompt
        limits = ContextLimits(
            messages_limit=len(chat.history),
            bytes_limit=self.config.ai.bytes_limit,
            symbol_limit=self.config.ai.message_max_length,
        )
        budget = limits.bytes_limit - len(prompt.encode("utf-8"))
        transcript, _ = self.context.fit_transcript(list(chat.history), limits, max(budget, 0), hidden_ids)
        if not transcript:
            return None

        response = await self.provider.chat(
            messages=[
                {"role": "user", "content": transcript},
                {"role": "user", "content": prompt},
            ],
            model=chat.chat_model or self.config.ai.model,
            max_tokens=self.config.ai.max_tokens,
            temperature=self.config.ai.temperature,
        )
        note = (response.content or "").strip()
        if response.is_error or not note:
            logger.warning("notes_summary_failed", chat_id=chat_memory.chat_id, finish_reason=response.finish_reason)
            return None

        chat.notes.append(note)
        chat_memory.remove_old_notes(self.config.memory.notes_max_length)
        chat.last_notes = max(chat.last_notes, self._clock())
        logger.info("notes_summary_added", chat_id=chat_memory.chat_id, notes=len(chat.notes))
        return note

    async def cancel_all(self) -> None:
        tasks = list(self.tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
