"""Reply decision: an ordered list of named stages, first match wins."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable

from groupbot.channels.events import InboundMessage
from groupbot.config.schema import Config
from groupbot.logging import get_logger
from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.models import Sender

logger = get_logger(__name__)


@lru_cache(maxsize=256)
def _compile_names(names: tuple[str, ...]) -> re.Pattern[str] | None:
    if not names:
        return None
    return re.compile(r"(?<!\w)(" + "|".join(re.escape(n) for n in names) + ")", re.IGNORECASE)


class Verdict(str, Enum):
    DIRECT = "direct"
    AMBIENT = "ambient"
    SILENT = "silent"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    stage: str

    @property
    def respond(self) -> bool:
        return self.verdict is not Verdict.SILENT

    @property
    def is_ambient(self) -> bool:
        """Ambient replies were never promised, so their failures stay invisible."""
        return self.verdict is Verdict.AMBIENT


@dataclass(frozen=True)
class DecisionStage:
    """A named predicate; ``check`` returns a verdict to stop, or None to fall through."""

    name: str
    check: Callable[[InboundMessage, ChatMemory], Verdict | None]


FALLTHROUGH = "fallthrough"


class ReplyDecider:
    """
    Decides whether the bot answers an inbound message.

    Deterministic triggers (private chat, reply to the bot, @handle, name) are
    evaluated before the probabilistic ones, so the probabilities never
    suppress them. Random draws come from ``rng`` so tests can pin them.
    """

    def __init__(self, config: Config, bot: Sender, rng: random.Random | None = None):
        self.config = config
        self.bot = bot
        self.rng = rng or random.Random()
        self._ignore_patterns = [re.compile(p, re.IGNORECASE) for p in config.reply.tend_to_ignore]
        self._reply_patterns = [re.compile(p, re.IGNORECASE) for p in config.reply.tend_to_reply]
        self.stages: list[DecisionStage] = [
            DecisionStage("empty", self._empty),
            DecisionStage("self_echo", self._self_echo),
            DecisionStage("direct_message", self._direct_message),
            DecisionStage("direct_reply", self._direct_reply),
            DecisionStage("username_mention", self._username_mention),
            DecisionStage("name_mention", self._name_mention),
            DecisionStage("tend_to_ignore", self._tend_to_ignore),
            DecisionStage("tend_to_reply", self._tend_to_reply),
            DecisionStage("random_reply", self._random_reply),
        ]

    def decide(self, msg: InboundMessage, chat_memory: ChatMemory) -> Decision:
        for stage in self.stages:
            verdict = stage.check(msg, chat_memory)
            if verdict is not None:
                logger.debug("reply_decision", stage=stage.name, verdict=verdict.value)
                return Decision(verdict, stage.name)
        logger.debug("reply_decision", stage=FALLTHROUGH, verdict=Verdict.SILENT.value)
        return Decision(Verdict.SILENT, FALLTHROUGH)

    def _draw(self, probability: float) -> bool:
        # A zero probability never consumes a draw.
        return probability > 0 and self.rng.random() < probability

    def name_pattern(self, chat_memory: ChatMemory) -> re.Pattern[str] | None:
        """Case-insensitive pattern matching the default names and the persona's aliases."""
        names = list(self.config.names)
        character = chat_memory.get_chat().character
        if character is not None:
            names.extend([character.name, *character.names])
        key = tuple(sorted({n.strip() for n in names if n and n.strip()}, key=lambda n: (-len(n), n)))
        return _compile_names(key)

    # Stages

    def _empty(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        if not msg.text.strip() and not msg.attachments:
            return Verdict.SILENT
        return None

    def _self_echo(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        return Verdict.SILENT if msg.via_self or msg.sender.id == self.bot.id else None

    def _direct_message(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        return Verdict.DIRECT if msg.is_private else None

    def _direct_reply(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        if msg.reply_to is not None and msg.reply_to.is_myself:
            chat_memory.touch()
            return Verdict.DIRECT
        return None

    def _username_mention(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        if self.bot.username and f"@{self.bot.username}".lower() in msg.text.lower():
            return Verdict.DIRECT
        return None

    def _name_mention(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        if msg.forward_from_id is not None and msg.forward_from_id == self.bot.id:
            return None
        pattern = self.name_pattern(chat_memory)
        if pattern is not None and pattern.search(msg.text):
            return Verdict.DIRECT
        return None

    def _tend_to_ignore(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        reply = self.config.reply
        if (
            any(p.search(msg.text) for p in self._ignore_patterns)
            and len(msg.text) < reply.tend_to_ignore_max_length
            and self._draw(reply.tend_to_ignore_probability)
        ):
            return Verdict.SILENT
        return None

    def _tend_to_reply(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        if any(p.search(msg.text) for p in self._reply_patterns) and self._draw(
            self.config.reply.tend_to_reply_probability
        ):
            return Verdict.AMBIENT
        return None

    def _random_reply(self, msg: InboundMessage, chat_memory: ChatMemory) -> Verdict | None:
        probability = chat_memory.get_chat().random_reply_probability
        if probability is None:
            probability = self.config.reply.random_reply_probability
        return Verdict.AMBIENT if self._draw(probability) else None
