"""Configuration schema using Pydantic."""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_ENV_REF_RE = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _resolve_env(value: str) -> str:
    """Resolve ``$VAR`` / ``${VAR}`` to the environment value; leave anything else untouched."""
    if not value:
        return value
    m = _ENV_REF_RE.match(value.strip())
    if not m:
        return value
    return os.environ.get(m.group(1), value)


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResilienceConfig(Base):
    """Timeout / retry / circuit-breaker settings for LLM calls."""

    timeout: int = 120
    max_retries: int = 3
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown: int = 60


DEFAULT_PROMPT = (
    "You are a regular member of a group chat. Keep replies short and casual, "
    "like a person typing on a phone."
)

DEFAULT_FINAL_PROMPT = (
    "Write your next message(s) in the chat. Answer with a JSON array of objects "
    '{"text": "...", "reply_to": "username"}; "reply_to" is optional and names the '
    "user you are answering."
)

DEFAULT_NOTES_PROMPT = (
    "Summarize the conversation above in a few sentences: who talked about what, "
    "decisions made and open questions. Reply with the summary only."
)


class AIConfig(Base):
    """Language-model settings."""

    model: str = "gemini/gemini-2.0-flash"
    api_key: str = ""
    api_base: str | None = None
    prompt: str = DEFAULT_PROMPT
    final_prompt: str = DEFAULT_FINAL_PROMPT
    notes_prompt: str = DEFAULT_NOTES_PROMPT
    temperature: float = 0.9
    top_k: int | None = None
    top_p: float | None = None
    max_tokens: int = 1024
    messages_to_pass: int = 30
    message_max_length: int = 1000
    bytes_limit: int = 32_000
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)

    @property
    def resolved_api_key(self) -> str:
        return _resolve_env(self.api_key)


class ReplyConfig(Base):
    """Tunables for the ambient branches of the reply decision."""

    tend_to_reply: list[str] = Field(default_factory=list)
    tend_to_reply_probability: float = 0.5
    tend_to_ignore: list[str] = Field(default_factory=list)
    tend_to_ignore_probability: float = 0.9
    tend_to_ignore_max_length: int = 20
    random_reply_probability: float = 0.02

    @field_validator("tend_to_reply", "tend_to_ignore")
    @classmethod
    def _patterns_compile(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {pattern!r}: {e}") from e
        return patterns

    @field_validator(
        "tend_to_reply_probability",
        "tend_to_ignore_probability",
        "random_reply_probability",
    )
    @classmethod
    def _probability_range(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("probability must be between 0 and 1")
        return value


class MemoryConfig(Base):
    """Per-chat memory limits and persistence."""

    path: str = "memory.json"
    history_max_length: int = 100
    notes_max_length: int = 10
    save_interval_seconds: float = 60.0
    notes_interval_hours: float = 12.0
    notes_min_messages: int = 20
    active_member_days: int = 7
    active_member_limit: int = 10
    respect_opt_out: bool = True

    @property
    def snapshot_path(self) -> Path:
        return Path(self.path).expanduser()


class DeliveryConfig(Base):
    """Pacing of multi-part replies."""

    symbols_per_minute: int = 1200
    max_typing_delay: float = 8.0


class TelegramConfig(Base):
    """Telegram bot connection."""

    token: str = ""
    rate_limit_messages: int = 1
    rate_limit_window_seconds: float = 2.0

    @property
    def resolved_token(self) -> str:
        return _resolve_env(self.token)


class Config(Base):
    """Root configuration for groupbot."""

    names: list[str] = Field(default_factory=list)
    admin_ids: list[int] = Field(default_factory=list)
    start_message: str = "Hi! Mention me by name and I will join the conversation."
    fallback_replies: list[str] = Field(default_factory=lambda: ["...", "hmm", "sorry, lost my train of thought"])
    ai: AIConfig = Field(default_factory=AIConfig)
    reply: ReplyConfig = Field(default_factory=ReplyConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)

    def is_admin(self, user_id: int | None) -> bool:
        return user_id is not None and user_id in self.admin_ids
