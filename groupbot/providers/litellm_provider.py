"""LiteLLM provider implementation for multi-provider support."""

import asyncio
import copy
import logging
import time
from typing import Any

import litellm
from litellm import acompletion

from groupbot.config.schema import ResilienceConfig
from groupbot.logging import get_logger, mask_secret
from groupbot.providers.base import LLMProvider, LLMResponse

logger = get_logger("groupbot.providers.litellm")


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM, so any model string LiteLLM understands
    (``gemini/...``, ``openai/...``, ``anthropic/...``) can be configured.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gemini/gemini-2.0-flash",
        resilience_config: ResilienceConfig | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model

        # Resilience: timeout / retry / circuit-breaker
        self._resilience = resilience_config
        self._consecutive_failures: int = 0
        self._circuit_open_until: float = 0.0

        if api_key:
            logger.info("provider_initialized", model=default_model, api_key=mask_secret(api_key))

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop sampling parameters a provider does not support (e.g. top_k on OpenAI)
        litellm.drop_params = True

    def _check_circuit_breaker(self) -> str | None:
        """Return an error message if the circuit is open, else None."""
        rc = self._resilience
        if not rc or rc.circuit_breaker_threshold <= 0:
            return None
        if self._consecutive_failures < rc.circuit_breaker_threshold:
            return None
        now = time.monotonic()
        if now < self._circuit_open_until:
            return (
                f"Circuit breaker open: {self._consecutive_failures} consecutive failures. "
                f"Retry after {int(self._circuit_open_until - now)}s cooldown."
            )
        # Cooldown expired -> half-open: allow one probe attempt
        return None

    def _record_result(self, success: bool) -> None:
        """Update circuit-breaker counters after a call."""
        rc = self._resilience
        if not rc or rc.circuit_breaker_threshold <= 0:
            return
        if success:
            self._consecutive_failures = 0
            self._circuit_open_until = 0.0
        else:
            self._consecutive_failures += 1
            if self._consecutive_failures >= rc.circuit_breaker_threshold:
                self._circuit_open_until = time.monotonic() + rc.circuit_breaker_cooldown
                logger.warning(
                    "circuit_breaker_opened",
                    failures=self._consecutive_failures,
                    cooldown=rc.circuit_breaker_cooldown,
                )

    def _mask_error(self, error_msg: str) -> str:
        if self.api_key and self.api_key in error_msg:
            return error_msg.replace(self.api_key, mask_secret(self.api_key))
        return error_msg

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        top_k: int | None = None,
        top_p: float | None = None,
    ) -> LLMResponse:
        """Send a chat completion request via LiteLLM."""
        model = model or self.default_model

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if top_k is not None:
            kwargs["top_k"] = top_k
        if top_p is not None:
            kwargs["top_p"] = top_p
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        if logging.getLogger("groupbot").isEnabledFor(logging.DEBUG):
            dbg = copy.deepcopy(kwargs)
            dbg.pop("api_key", None)
            for m in dbg["messages"]:
                if isinstance(m.get("content"), str) and len(m["content"]) > 200:
                    m["content"] = m["content"][:200] + f"... ({len(m['content'])} chars)"
            logger.debug("litellm_request", **dbg)

        cb_error = self._check_circuit_breaker()
        if cb_error:
            return LLMResponse(content=f"Error calling LLM: {cb_error}", finish_reason="error")

        rc = self._resilience
        if rc:
            kwargs["request_timeout"] = rc.timeout
            kwargs["num_retries"] = rc.max_retries

        try:
            coro = acompletion(**kwargs)
            if rc:
                response = await asyncio.wait_for(coro, timeout=rc.timeout + 30)
            else:
                response = await coro
        except asyncio.TimeoutError:
            self._record_result(False)
            logger.error("llm_call_timeout", model=model)
            return LLMResponse(content="Error calling LLM: request timed out", finish_reason="error")
        except Exception as e:
            self._record_result(False)
            error_msg = self._mask_error(str(e))
            logger.error("llm_call_failed", model=model, error=error_msg, error_type=type(e).__name__)
            return LLMResponse(content=f"Error calling LLM: {error_msg}", finish_reason="error")

        self._record_result(True)
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
