"""
Anthropic Claude adapter for citation queries.
"""

import asyncio
import logging
import random
from typing import Optional

import anthropic

from infrastructure.config.settings import settings

from .base import (
    CITATION_SYSTEM_PROMPT,
    ProviderClient,
    ProviderNotConfiguredError,
    ProviderResponse,
)

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = (
    "rate_limit",
    "429",
    "500",
    "502",
    "503",
    "504",
    "overloaded",
    "connect",
    "timeout",
)


async def _retry_with_backoff(coro_factory, max_retries=3, base_delay=1.0):
    """Retry an async operation with exponential backoff + jitter."""
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as e:
            error_str = f"{type(e).__name__} {e}".lower()
            is_transient = any(k in error_str for k in _TRANSIENT_MARKERS)
            if not is_transient or attempt == max_retries:
                raise
            delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
            logger.warning(
                "Transient API error (attempt %d/%d), retrying in %.1fs: %s",
                attempt + 1,
                max_retries,
                delay,
                str(e),
            )
            await asyncio.sleep(delay)


class AnthropicCitationProvider(ProviderClient):
    """Sends citation prompts to Claude."""

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ):
        api_key = api_key if api_key is not None else settings.anthropic_api_key
        if api_key:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=float(settings.provider_timeout),
            )
        else:
            self._client = None
        self.model = model or settings.anthropic_model
        self._max_tokens = max_tokens or settings.provider_max_tokens

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def query(self, prompt: str) -> ProviderResponse:
        if not self._client:
            raise ProviderNotConfiguredError(self.name)

        message = await _retry_with_backoff(
            lambda: self._client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens,
                system=CITATION_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        )

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        usage = message.usage
        tokens = (usage.input_tokens + usage.output_tokens) if usage else 0
        logger.debug("Claude answered citation prompt (%d chars, %d tokens)", len(text), tokens)
        return ProviderResponse(text=text, tokens_used=tokens, model=self.model)
