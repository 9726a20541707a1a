# AI Adapters
# OpenAI, Anthropic and Perplexity clients for citation checks

from .anthropic_adapter import AnthropicCitationProvider
from .base import (
    CITATION_SYSTEM_PROMPT,
    ProviderClient,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderResponse,
)
from .providers import (
    OpenAICitationProvider,
    PerplexityCitationProvider,
    build_default_providers,
)

__all__ = [
    "AnthropicCitationProvider",
    "OpenAICitationProvider",
    "PerplexityCitationProvider",
    "build_default_providers",
    "CITATION_SYSTEM_PROMPT",
    "ProviderClient",
    "ProviderError",
    "ProviderNotConfiguredError",
    "ProviderResponse",
]
