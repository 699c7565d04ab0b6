"""Slash commands that operate on a chat's memory."""

from __future__ import annotations

from groupbot.channels.events import InboundMessage, OutboundMessage
from groupbot.config.schema import Config
from groupbot.logging import get_logger
from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import Character

logger = get_logger(__name__)

HELP_TEXT = (
    "Commands:\n"
    "/forget - Forget the conversation history of this chat\n"
    "/summary - Show what I remember about this chat\n"
    "/model [name|default] - Show or change the model (admins)\n"
    "/character [reset|Name; alias, alias; description] - Show or change my persona (admins)\n"
    "/optout - Stop me from mentioning or replying to you\n"
    "/optin - Undo /optout\n"
    "/help - Show available commands"
)


def parse_character(definition: str) -> Character | None:
    """Parse ``Name; alias, alias; description``; returns None without a name."""
    parts = [p.strip() for p in definition.split(";", 2)]
    name = parts[0]
    if not name:
        return None
    aliases = [a.strip() for a in parts[1].split(",") if a.strip()] if len(parts) > 1 else []
    description = parts[2] if len(parts) > 2 else ""
    return Character(name=name, description=description, names=[name, *[a for a in aliases if a != name]])


class CommandHandler:
    """Handle slash commands; everything else is left to the reply pipeline."""

    def __init__(self, config: Config):
        self.config = config
        self._handlers = {
            "start": self._start,
            "help": self._help,
            "forget": self._forget,
            "summary": self._summary,
            "model": self._model,
            "character": self._character,
            "optout": self._optout,
            "optin": self._optin,
        }

    @staticmethod
    def _addressed_elsewhere(msg: InboundMessage, bot_username: str | None) -> bool:
        head = msg.text.split(maxsplit=1)[0]
        if "@" not in head:
            return False
        target = head.split("@", 1)[1].lower()
        return not bot_username or target != bot_username.lower()

    def owns(self, msg: InboundMessage, bot_username: str | None = None) -> bool:
        """True if *msg* is one of our commands addressed to this bot."""
        return msg.command in self._handlers and not self._addressed_elsewhere(msg, bot_username)

    def handle(
        self,
        msg: InboundMessage,
        chat_memory: ChatMemory,
        bot_username: str | None = None,
    ) -> OutboundMessage | None:
        """Run the command and return its response; None if there is nothing to send."""
        if not self.owns(msg, bot_username):
            return None

        command = msg.command
        logger.info("command_received", command=command, chat_id=msg.chat_id, sender_id=msg.sender.id)
        content = self._handlers[command](msg, chat_memory)
        if content is None:
            return None
        return OutboundMessage(chat_id=msg.chat_id, content=content, reply_to_message_id=msg.message_id)

    def _start(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        return self.config.start_message

    def _help(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        return HELP_TEXT

    def _forget(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        chat_memory.clear()
        return "Okay, I forgot our conversation."

    def _summary(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        notes = chat_memory.get_chat().notes
        if not notes:
            return "I have no notes about this chat yet."
        return "\n\n".join(notes)

    def _model(self, msg: InboundMessage, chat_memory: ChatMemory) -> str | None:
        if not self.config.is_admin(msg.sender.id):
            logger.warning("command_forbidden", command="model", sender_id=msg.sender.id)
            return None
        chat = chat_memory.get_chat()
        args = msg.command_args
        if not args:
            return f"Current model: {chat.chat_model or self.config.ai.model}"
        if args[0].lower() == "default":
            chat.chat_model = None
            return f"Model reset to default: {self.config.ai.model}"
        chat.chat_model = args[0]
        return f"Model set to {chat.chat_model}"

    def _character(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        chat = chat_memory.get_chat()
        definition = msg.text.split(maxsplit=1)[1].strip() if len(msg.text.split(maxsplit=1)) > 1 else ""
        if not definition:
            if chat.character is None:
                return "No character set, using the default persona."
            return f"Current character: {chat.character.name} ({', '.join(chat.character.names)})"
        if not self.config.is_admin(msg.sender.id):
            logger.warning("command_forbidden", command="character", sender_id=msg.sender.id)
            return "Only admins can change the character."
        if definition.lower() == "reset":
            chat.character = None
            return "Character reset to the default persona."
        character = parse_character(definition)
        if character is None:
            return "Usage: /character Name; alias, alias; description"
        chat.character = character
        return f"Character set to {character.name}."

    def _optout(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        if chat_memory.opt_out(msg.sender):
            return "Got it, I won't mention or reply to you anymore."
        return "You have already opted out."

    def _optin(self, msg: InboundMessage, chat_memory: ChatMemory) -> str:
        if chat_memory.opt_in(msg.sender.id):
            return "Welcome back!"
        return "You were not opted out."
