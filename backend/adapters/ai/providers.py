"""
OpenAI and Perplexity adapters for citation queries.

Both expose an OpenAI-compatible chat completions endpoint and are called
over httpx; Claude goes through the Anthropic SDK in anthropic_adapter.
"""

import logging
from typing import Any, Optional

import httpx

from infrastructure.config.settings import settings

from .anthropic_adapter import AnthropicCitationProvider, _retry_with_backoff
from .base import (
    CITATION_SYSTEM_PROMPT,
    ProviderClient,
    ProviderNotConfiguredError,
    ProviderResponse,
)

logger = logging.getLogger(__name__)


class ChatCompletionsProvider(ProviderClient):
    """Provider speaking the ``/chat/completions`` JSON protocol."""

    BASE_URL = ""

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self.model = model
        self._max_tokens = max_tokens or settings.provider_max_tokens
        self._timeout = timeout or float(settings.provider_timeout)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": CITATION_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self._max_tokens,
            "temperature": 0.7,
        }

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.json()

    def _sources(self, data: dict[str, Any]) -> list[Any]:
        return []

    async def query(self, prompt: str) -> ProviderResponse:
        if not self.configured:
            raise ProviderNotConfiguredError(self.name)

        payload = self._payload(prompt)
        data = await _retry_with_backoff(lambda: self._post(payload))

        choices = data.get("choices") or []
        text = ""
        if choices:
            text = (choices[0].get("message") or {}).get("content") or ""
        tokens = (data.get("usage") or {}).get("total_tokens", 0)

        return ProviderResponse(
            text=text,
            tokens_used=tokens,
            model=self.model,
            sources=self._sources(data),
        )


class OpenAICitationProvider(ChatCompletionsProvider):
    name = "openai"
    BASE_URL = "https://api.openai.com/v1"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, **kwargs):
        super().__init__(
            api_key if api_key is not None else settings.openai_api_key,
            model or settings.openai_model,
            **kwargs,
        )


class PerplexityCitationProvider(ChatCompletionsProvider):
    """Perplexity search-backed answers; sources come back as citations."""

    name = "perplexity"
    BASE_URL = "https://api.perplexity.ai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, **kwargs):
        super().__init__(
            api_key if api_key is not None else settings.perplexity_api_key,
            model or settings.perplexity_model,
            **kwargs,
        )

    def _payload(self, prompt: str) -> dict[str, Any]:
        payload = super()._payload(prompt)
        payload["return_citations"] = True
        return payload

    def _sources(self, data: dict[str, Any]) -> list[Any]:
        return list(data.get("citations") or [])


def build_default_providers() -> dict[str, ProviderClient]:
    """One client per supported provider, configured from settings."""
    providers: dict[str, ProviderClient] = {
        "openai": OpenAICitationProvider(),
        "anthropic": AnthropicCitationProvider(),
        "perplexity": PerplexityCitationProvider(),
    }
    missing = [name for name, client in providers.items() if not client.configured]
    if missing:
        logger.warning("AI providers without API keys: %s", ", ".join(missing))
    return providers
