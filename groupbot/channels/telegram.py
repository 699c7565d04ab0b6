"""Telegram channel implementation using python-telegram-bot."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from telegram import Message, MessageOriginChannel, MessageOriginChat, MessageOriginHiddenUser, MessageOriginUser, ReplyParameters, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from groupbot.channels.base import BaseChannel, MessageHandler as InboundHandler
from groupbot.channels.events import InboundMessage, OutboundMessage, SentMessage
from groupbot.config.schema import TelegramConfig
from groupbot.errors import DeliveryError
from groupbot.logging import get_logger
from groupbot.memory.models import Attachment, AttachmentKind, ChatInfo, ReplyTo, Sender, render_message_text

logger = get_logger(__name__)

# Telegram clears the typing indicator after ~5 seconds
_TYPING_REFRESH_SECONDS = 4.5

_ATTACHMENT_FIELDS: tuple[tuple[AttachmentKind, str], ...] = (
    (AttachmentKind.PHOTO, "photo"),
    (AttachmentKind.VIDEO, "video"),
    (AttachmentKind.ANIMATION, "animation"),
    (AttachmentKind.AUDIO, "audio"),
    (AttachmentKind.VOICE, "voice"),
    (AttachmentKind.DOCUMENT, "document"),
    (AttachmentKind.VIDEO_NOTE, "video_note"),
    (AttachmentKind.CONTACT, "contact"),
    (AttachmentKind.LOCATION, "location"),
    (AttachmentKind.VENUE, "venue"),
    (AttachmentKind.POLL, "poll"),
    (AttachmentKind.DICE, "dice"),
    (AttachmentKind.GAME, "game"),
)


def extract_attachments(message: Message) -> list[Attachment]:
    attachments: list[Attachment] = []
    if message.sticker:
        attachments.append(Attachment(AttachmentKind.STICKER, emoji=message.sticker.emoji))
    for kind, attr in _ATTACHMENT_FIELDS:
        if getattr(message, attr, None):
            attachments.append(Attachment(kind))
    return attachments


def forward_origin_name(message: Message) -> str | None:
    """Display name of the forward origin, or None when the message is not a forward."""
    origin = message.forward_origin
    if origin is None:
        return None
    if isinstance(origin, MessageOriginUser):
        return origin.sender_user.first_name or ""
    if isinstance(origin, MessageOriginHiddenUser):
        return "hidden"
    if isinstance(origin, MessageOriginChat):
        return origin.sender_chat.title or origin.sender_chat.first_name or ""
    if isinstance(origin, MessageOriginChannel):
        return origin.chat.title or origin.chat.first_name or ""
    return ""


def message_text(message: Message) -> str:
    return render_message_text(
        message.text,
        caption=message.caption,
        attachments=extract_attachments(message),
        forwarded_from=forward_origin_name(message),
    )


def to_inbound(message: Message, bot: Sender) -> InboundMessage | None:
    """Normalize a Telegram message; returns None for messages without a user sender."""
    user = message.from_user
    if user is None:
        return None

    reply_to: ReplyTo | None = None
    replied = message.reply_to_message
    if replied is not None and replied.from_user is not None:
        reply_to = ReplyTo(
            id=replied.message_id,
            text=message_text(replied),
            sender=Sender(
                id=replied.from_user.id,
                name=replied.from_user.first_name,
                username=replied.from_user.username,
                myself=replied.from_user.id == bot.id,
            ),
            is_myself=replied.from_user.id == bot.id,
            media_group_id=replied.media_group_id,
        )

    forward_from_id = None
    if isinstance(message.forward_origin, MessageOriginUser):
        forward_from_id = message.forward_origin.sender_user.id

    via_self = user.id == bot.id or (message.via_bot is not None and message.via_bot.id == bot.id)

    return InboundMessage(
        chat_id=message.chat.id,
        message_id=message.message_id,
        sender=Sender(id=user.id, name=user.first_name, username=user.username),
        chat=ChatInfo(
            type=str(message.chat.type),
            title=message.chat.title or message.chat.first_name,
            username=message.chat.username,
        ),
        text=message_text(message),
        reply_to=reply_to,
        attachments=extract_attachments(message),
        forward_from_id=forward_from_id,
        via_self=via_self,
        date=int(message.date.timestamp()),
    )


class TelegramChannel(BaseChannel):
    """Long-polling Telegram bot."""

    name = "telegram"

    def __init__(self, config: TelegramConfig, on_message: InboundHandler | None = None):
        super().__init__(config, on_message)
        self._app: Application | None = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        token = self.config.resolved_token
        if not token:
            raise ValueError("Telegram token is not configured")

        self._app = Application.builder().token(token).concurrent_updates(True).build()
        self._app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, self._on_update))

        await self._app.initialize()
        me = await self._app.bot.get_me()
        self.bot_user = Sender(id=me.id, name=me.first_name, username=me.username, myself=True)

        await self._app.start()
        await self._app.updater.start_polling(allowed_updates=[Update.MESSAGE])
        self._running = True
        logger.info("telegram_channel_started", bot_username=me.username, bot_id=me.id)
        try:
            await self._stop_event.wait()
        finally:
            self._running = False
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_channel_stopped")

    async def stop(self) -> None:
        self._stop_event.set()

    async def _on_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.message
        if message is None or self.bot_user is None:
            return
        inbound = to_inbound(message, self.bot_user)
        if inbound is None:
            return
        await self._handle_message(inbound)

    async def send(self, msg: OutboundMessage) -> SentMessage:
        if self._app is None:
            raise DeliveryError("Telegram channel is not started")

        reply_parameters = None
        if msg.reply_to_message_id is not None:
            reply_parameters = ReplyParameters(
                message_id=msg.reply_to_message_id,
                allow_sending_without_reply=True,
            )

        try:
            try:
                sent = await self._app.bot.send_message(
                    chat_id=msg.chat_id,
                    text=msg.content,
                    parse_mode=ParseMode.MARKDOWN,
                    reply_parameters=reply_parameters,
                )
            except BadRequest as e:
                # Model output is not always valid Markdown; retry as plain text.
                logger.debug("telegram_markdown_rejected", chat_id=msg.chat_id, error=str(e))
                sent = await self._app.bot.send_message(
                    chat_id=msg.chat_id,
                    text=msg.content,
                    reply_parameters=reply_parameters,
                )
        except TelegramError as e:
            raise DeliveryError(f"Telegram rejected message to chat {msg.chat_id}: {e}") from e

        return SentMessage(message_id=sent.message_id, date=int(sent.date.timestamp()))

    @asynccontextmanager
    async def typing(self, chat_id: int) -> AsyncIterator[None]:
        async def _keep_typing() -> None:
            while True:
                try:
                    await self._app.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
                except TelegramError as e:
                    logger.debug("telegram_typing_failed", chat_id=chat_id, error=str(e))
                await asyncio.sleep(_TYPING_REFRESH_SECONDS)

        task = asyncio.create_task(_keep_typing()) if self._app is not None else None
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
