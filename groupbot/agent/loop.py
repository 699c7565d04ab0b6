"""Agent loop: handles one inbound message from recording to reply."""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable

import structlog

from groupbot.agent.commands import CommandHandler
from groupbot.agent.context import ContextBuilder
from groupbot.agent.decision import Decision, ReplyDecider
from groupbot.agent.notes import NotesSummarizer
from groupbot.agent.segmenter import DeliverySequencer, Segment, clean_reply, parse_segments
from groupbot.channels.base import BaseChannel
from groupbot.channels.events import InboundMessage, OutboundMessage
from groupbot.channels.ratelimit import RateLimiter
from groupbot.config.schema import Config
from groupbot.errors import DeliveryError, LLMError
from groupbot.logging import get_logger
from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import ChatMessage, Memory, ReplyTo, Sender
from groupbot.providers.base import LLMProvider
from groupbot.utils.helpers import now_ms

logger = get_logger(__name__)


class AgentLoop:
    """
    The agent loop is the core processing engine.

    For every inbound message it:
    1. Records the message and refreshes the sender in the roster
    2. Runs slash commands
    3. Decides whether to reply
    4. Builds the prompt and calls the LLM
    5. Delivers the answer segment by segment
    6. Schedules a notes summary when one is due
    """

    def __init__(
        self,
        config: Config,
        memory: Memory,
        provider: LLMProvider,
        channel: BaseChannel,
        rate_limiter: RateLimiter | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        notes: NotesSummarizer | None = None,
    ):
        self.config = config
        self.memory = memory
        self.provider = provider
        self.channel = channel
        self.rate_limiter = rate_limiter
        self.rng = rng or random.Random()
        self._clock = clock

        self.context = ContextBuilder(config)
        self.commands = CommandHandler(config)
        self.delivery = DeliverySequencer(channel, config.delivery, sleep=sleep)
        self.notes = notes or NotesSummarizer(config, provider, self.context, clock=clock)
        self._decider: ReplyDecider | None = None

    def decider_for(self, bot: Sender) -> ReplyDecider:
        if self._decider is None or self._decider.bot != bot:
            self._decider = ReplyDecider(self.config, bot, rng=self.rng)
        return self._decider

    async def handle(self, msg: InboundMessage) -> None:
        """Entry point registered as the channel's message handler; never raises."""
        with structlog.contextvars.bound_contextvars(
            chat_id=msg.chat_id,
            sender_id=msg.sender.id,
            message_id=msg.message_id,
        ):
            try:
                await self._process_message(msg)
            except Exception as e:
                logger.exception(
                    "Error processing message",
                    error_type=type(e).__name__,
                    chat_id=msg.chat_id,
                    sender_id=msg.sender.id,
                )

    async def _process_message(self, msg: InboundMessage) -> None:
        bot = self.channel.bot_user
        if bot is None:
            logger.warning("bot_identity_unknown")
            return

        chat_memory = ChatMemory(self.memory, msg.chat_id, msg.chat, clock=self._clock)
        self.record_inbound(msg, chat_memory, bot)

        if self.commands.owns(msg, bot.username):
            response = self.commands.handle(msg, chat_memory, bot_username=bot.username)
            if response is not None:
                try:
                    await self.channel.send(response)
                except DeliveryError as e:
                    logger.warning("command_reply_failed", command=msg.command, error=str(e))
            return

        if self.rate_limiter is not None and not self.rate_limiter.allows(msg):
            logger.debug("rate_limited")
            return

        decision = self.decider_for(bot).decide(msg, chat_memory)
        if decision.respond:
            await self._reply(msg, chat_memory, decision, bot)

        self.notes.maybe_schedule(chat_memory)

    def record_inbound(self, msg: InboundMessage, chat_memory: ChatMemory, bot: Sender) -> None:
        """Append the message to history and upsert its sender."""
        chat_memory.add_message(
            ChatMessage(
                id=msg.message_id,
                text=msg.text,
                sender=msg.sender,
                reply_to=msg.reply_to,
                is_myself=msg.sender.id == bot.id,
                date=msg.date,
            )
        )
        chat_memory.remove_old_messages(self.config.memory.history_max_length)
        if msg.sender.id != bot.id:
            chat_memory.update_user(msg.sender)

    async def _reply(self, msg: InboundMessage, chat_memory: ChatMemory, decision: Decision, bot: Sender) -> None:
        chat = chat_memory.get_chat()
        snapshot = list(chat.history)
        hidden_ids = (
            frozenset(chat_memory.opted_out_ids()) if self.config.memory.respect_opt_out else frozenset()
        )
        model = chat.chat_model or self.config.ai.model

        try:
            built = self.context.build(chat_memory)
            async with self.channel.typing(msg.chat_id):
                response = await self.provider.chat(
                    messages=built.messages,
                    model=model,
                    max_tokens=self.config.ai.max_tokens,
                    temperature=self.config.ai.temperature,
                    top_k=self.config.ai.top_k,
                    top_p=self.config.ai.top_p,
                )
            if response.is_error:
                raise LLMError(response.content or "LLM call failed")

            segments = [
                Segment(clean_reply(s.text, bot.name, bot.username), s.reply_to)
                for s in parse_segments(response.content)
            ]
            report = await self.delivery.deliver(msg.chat_id, segments, chat_memory, snapshot, bot, hidden_ids)
            if not report.delivered:
                raise LLMError("LLM response had no text to send")
        except (LLMError, DeliveryError) as e:
            if decision.is_ambient:
                logger.info("ambient_reply_aborted", stage=decision.stage, error_type=type(e).__name__, error=str(e))
                return
            logger.warning("reply_failed", stage=decision.stage, error_type=type(e).__name__, error=str(e))
            await self._send_fallback(msg, chat_memory, bot)
            return

        logger.info(
            "reply_sent",
            stage=decision.stage,
            model=model,
            segments=len(report.sent),
            truncated=report.empty_segment,
        )

    async def _send_fallback(self, msg: InboundMessage, chat_memory: ChatMemory, bot: Sender) -> None:
        """Send one filler reply to the triggering message."""
        if not self.config.fallback_replies:
            return
        content = self.rng.choice(self.config.fallback_replies)
        try:
            sent = await self.channel.send(
                OutboundMessage(chat_id=msg.chat_id, content=content, reply_to_message_id=msg.message_id)
            )
        except DeliveryError as e:
            logger.warning("fallback_reply_failed", error=str(e))
            return
        chat_memory.add_message(
            ChatMessage(
                id=sent.message_id,
                text=content,
                sender=Sender(id=bot.id, name=bot.name, username=bot.username, myself=True),
                reply_to=ReplyTo(id=msg.message_id, text=msg.text, sender=msg.sender),
                is_myself=True,
                date=sent.date,
            )
        )
