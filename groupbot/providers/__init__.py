"""LLM provider abstraction module."""

from groupbot.providers.base import LLMProvider, LLMResponse
from groupbot.providers.litellm_provider import LiteLLMProvider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider"]
