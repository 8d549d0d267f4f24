"""Chat-completion client behind the reasoning oracle.

Transient failures (timeouts, dropped connections, 429 and 5xx) are
retried with capped exponential backoff. When the primary model is
overloaded or unavailable the same request goes to the fallback model.
Reasoning models wrap their scratchpad in <think> tags; that text is
removed before the oracle sees the answer.
"""

import asyncio
import random
import re
from typing import Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError

from config import get_settings
from services.llm_providers import BaseLLMProvider, get_llm_provider
from utils.logging import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
# 529 is the "overloaded" status some gateways use
FALLBACK_STATUS_CODES = frozenset({503, 529})
FALLBACK_HINTS = ("model", "overloaded", "capacity", "unavailable")

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 10
MAX_BACKOFF_SECONDS = 8.0

_THINKING_BLOCK = re.compile(r"<(think|thinking)\b[^>]*>.*?</\1>\s*", re.DOTALL | re.IGNORECASE)
# \Z, not $, so an unclosed block is dropped through trailing newlines
_UNCLOSED_THINKING = re.compile(r"<think(?:ing)?\b[^>]*>.*\Z", re.DOTALL | re.IGNORECASE)


def strip_thinking_tags(text: str) -> str:
    """Drop <think>/<thinking> blocks; an unclosed tag drops the rest of the text."""
    if not text:
        return text
    text = _THINKING_BLOCK.sub("", text)
    return _UNCLOSED_THINKING.sub("", text).strip()


def estimate_tokens(text: str) -> int:
    """Rough count, about four characters per token."""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN + 1


def is_retryable(error: Exception) -> bool:
    if isinstance(error, (TimeoutError, ConnectionError, APIConnectionError, APITimeoutError)):
        return True
    if isinstance(error, APIStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES
    return False


def warrants_fallback(error: Exception) -> bool:
    """True for failures tied to the model rather than to the request."""
    if not isinstance(error, APIStatusError):
        return False
    if error.status_code in FALLBACK_STATUS_CODES:
        return True
    message = str(error).lower()
    return any(hint in message for hint in FALLBACK_HINTS)


class PromptTooLargeError(ValueError):
    """The prompt's estimated size exceeds max_prompt_tokens."""

    def __init__(self, estimated_tokens: int, max_tokens: int):
        self.estimated_tokens = estimated_tokens
        self.max_tokens = max_tokens
        super().__init__(
            f"Prompt too large: about {estimated_tokens} tokens, limit is {max_tokens}"
        )


class LLMClient:
    def __init__(self, provider: Optional[BaseLLMProvider] = None):
        self.settings = get_settings()
        self.provider = provider or get_llm_provider()
        self.model = self.provider.model_name
        self.fallback_model = self.settings.llm_fallback_model
        self.fallback_enabled = self.settings.llm_fallback_enabled
        self._fallback_provider: Optional[BaseLLMProvider] = None

    def _get_fallback_provider(self) -> Optional[BaseLLMProvider]:
        if not self.fallback_enabled or self.fallback_model in ("", self.model):
            return None
        if self._fallback_provider is None:
            self._fallback_provider = get_llm_provider(model=self.fallback_model)
        return self._fallback_provider

    def check_prompt_size(self, messages: list[dict]) -> int:
        """Estimate the request size, warning near the limit.

        Raises:
            PromptTooLargeError: The estimate exceeds max_prompt_tokens
        """
        limit = self.settings.max_prompt_tokens
        estimated = sum(
            estimate_tokens(m["content"]) + MESSAGE_OVERHEAD_TOKENS for m in messages
        )
        if estimated > limit:
            logger.error(f"Prompt rejected: about {estimated} tokens, limit {limit}")
            raise PromptTooLargeError(estimated, limit)
        if estimated > limit * self.settings.prompt_warning_threshold:
            logger.warning(f"Prompt at {estimated / limit:.0%} of the {limit} token limit")
        return estimated

    def _backoff(self, attempt: int) -> float:
        delay = self.settings.llm_retry_base_delay * 2**attempt
        return min(delay, MAX_BACKOFF_SECONDS) + random.uniform(0, 1)

    async def _call(
        self,
        provider: BaseLLMProvider,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        max_retries: int,
    ) -> str:
        model = provider.model_name
        attempts = max_retries + 1

        for attempt in range(attempts):
            try:
                text, usage = await provider.generate(
                    messages=messages, temperature=temperature, max_tokens=max_tokens
                )
            except Exception as e:
                if not is_retryable(e) or attempt + 1 == attempts:
                    logger.error(
                        f"{model} call failed on attempt {attempt + 1}/{attempts}: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    f"{model} attempt {attempt + 1}/{attempts} failed "
                    f"({type(e).__name__}), retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue

            if usage:
                logger.info("LLM token usage", extra={"model": model, "token_usage": usage})
            return strip_thinking_tags(text)

        raise RuntimeError("retry loop exited without a result")

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.6,
        max_tokens: int = 4096,
        max_retries: Optional[int] = None,
        validate_size: bool = True,
        user_id: Optional[str] = None,
    ) -> str:
        """Complete a prompt, with retries and model fallback.

        Args:
            prompt: User message
            system_prompt: Optional system message
            temperature: Sampling temperature
            max_tokens: Completion budget
            max_retries: Retries per model, llm_max_retries by default
            validate_size: Reject prompts over max_prompt_tokens before sending
            user_id: Caller, for logs only

        Returns:
            The completion with thinking blocks removed

        Raises:
            PromptTooLargeError: The prompt is over the size limit
            openai.APIError: Retries (and the fallback, if used) were exhausted
        """
        if max_retries is None:
            max_retries = self.settings.llm_max_retries

        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": prompt})

        if validate_size:
            self.check_prompt_size(messages)

        logger.debug(f"Oracle request to {self.model} for {user_id or 'anonymous'}")

        try:
            return await self._call(self.provider, messages, temperature, max_tokens, max_retries)
        except Exception as primary_error:
            fallback = self._get_fallback_provider()
            if fallback is None or not warrants_fallback(primary_error):
                raise
            logger.warning(
                f"Falling back from {self.model} to {self.fallback_model}",
                extra={"primary_error": str(primary_error)},
            )
            return await self._call(fallback, messages, temperature, max_tokens, max_retries)


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
