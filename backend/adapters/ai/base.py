"""
Common contract for AI providers queried during citation checks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

CITATION_SYSTEM_PROMPT = (
    "You are a helpful assistant. Provide informative, factual answers. "
    "When relevant, mention specific websites, companies, or resources that "
    "could help the user."
)


class ProviderError(Exception):
    """A provider call failed after retries."""


class ProviderNotConfiguredError(ProviderError):
    def __init__(self, provider: str):
        super().__init__(f"{provider} API key not configured")
        self.provider = provider


@dataclass
class ProviderResponse:
    """Free-text answer from a provider plus usage."""

    text: str
    tokens_used: int = 0
    model: str = ""
    # Explicit source list when the provider returns one (Perplexity)
    sources: list[Any] = field(default_factory=list)


class ProviderClient(ABC):
    """One AI provider endpoint."""

    name: str = ""
    model: str = ""

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether credentials are available."""

    @abstractmethod
    async def query(self, prompt: str) -> ProviderResponse:
        """Send ``prompt`` and return the answer. Raises on failure."""
