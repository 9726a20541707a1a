"""
Citation checking against AI providers.

Sends each prompt to each requested provider, then parses the free-text
answers into CitationResult records: whether the target site was cited,
with context, and which competitor domains were cited instead.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import urlparse

from adapters.ai.base import ProviderClient, ProviderResponse
from adapters.ai.providers import build_default_providers
from core.domain.citation import CitationResult, CompetitorCitation
from core.plans import MAX_PROMPTS_PER_ANALYSIS
from infrastructure.config.settings import settings
from services.citation_scoring import compute_citation_rate

logger = logging.getLogger(__name__)

# USD per 1K tokens as (input, output)
PROVIDER_COSTS = {
    "openai": (0.01, 0.03),
    "anthropic": (0.003, 0.015),
    "perplexity": (0.001, 0.001),
}

CITATION_CONTEXT_CHARS = 100
COMPETITOR_CONTEXT_CHARS = 50
MAX_COMPETITORS_PER_RESPONSE = 10

_URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_BARE_DOMAIN_RE = re.compile(
    r"\b[a-zA-Z0-9][-a-zA-Z0-9]*\.(?:com|org|net|io|co|ai)\b",
    re.IGNORECASE,
)

# Further labels after a bare match, as in acme.co.uk
_HOST_CONTINUATION_RE = re.compile(r"(?:\.[a-zA-Z0-9][-a-zA-Z0-9]*)+")


class CitationCheckError(ValueError):
    """Invalid citation check request."""


def extract_domain(url: str) -> str:
    """Lowercase hostname without a leading ``www.``; accepts bare domains."""
    url = (url or "").strip()
    candidate = url if url.lower().startswith(("http://", "https://")) else f"https://{url}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        host = ""
    if not host:
        host = url.split("/", 1)[0]
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def _belongs_to(domain: str, user_domain: str) -> bool:
    return domain == user_domain or domain.endswith("." + user_domain)


def _snippet(text: str, start: int, length: int, radius: int) -> str:
    begin = max(0, start - radius)
    end = min(len(text), start + length + radius)
    return text[begin:end].strip()


def find_citation(
    response: str,
    website: str,
    brand_name: Optional[str] = None,
) -> tuple[bool, Optional[str]]:
    """Whether ``response`` mentions the site or brand, with surrounding text."""
    lowered = response.lower()
    needles = [extract_domain(website)]
    if brand_name and brand_name.strip():
        needles.append(brand_name.strip().lower())

    for needle in needles:
        if not needle:
            continue
        index = lowered.find(needle)
        if index >= 0:
            snippet = _snippet(response, index, len(needle), CITATION_CONTEXT_CHARS)
            return True, f"...{snippet}..."
    return False, None


def _source_url_and_title(source: Any) -> tuple[str, Optional[str]]:
    if isinstance(source, Mapping):
        return str(source.get("url") or ""), source.get("title")
    return str(source), None


def extract_competitor_citations(
    response: str,
    user_domain: str,
    sources: Optional[Sequence[Any]] = None,
) -> list[CompetitorCitation]:
    """Competitor domains cited in ``response``, never including ``user_domain``.

    Explicit ``sources`` win over text scanning. Otherwise full URLs are
    collected first and bare domain mentions second.
    """
    user_domain = extract_domain(user_domain)
    competitors: list[CompetitorCitation] = []
    seen: set[str] = set()

    def add(domain: str, context: str, url: Optional[str] = None) -> None:
        if not domain or domain in seen or _belongs_to(domain, user_domain):
            return
        seen.add(domain)
        competitors.append(
            CompetitorCitation(
                domain=domain,
                context=context,
                url=url,
                position=len(competitors) + 1,
            )
        )

    if sources:
        for index, source in enumerate(sources):
            url, title = _source_url_and_title(source)
            add(extract_domain(url), title or f"Source {index + 1}", url)
        return competitors[:MAX_COMPETITORS_PER_RESPONSE]

    for match in _URL_RE.finditer(response):
        url = match.group(0)
        add(
            extract_domain(url),
            _snippet(response, match.start(), len(url), COMPETITOR_CONTEXT_CHARS),
            url,
        )

    for match in _BARE_DOMAIN_RE.finditer(response):
        host = match.group(0)
        continuation = _HOST_CONTINUATION_RE.match(response, match.end())
        if continuation:
            host += continuation.group(0)
        add(
            extract_domain(host),
            _snippet(response, match.start(), len(host), COMPETITOR_CONTEXT_CHARS),
        )

    return competitors[:MAX_COMPETITORS_PER_RESPONSE]


def estimate_cost(provider: str, tokens_used: int) -> float:
    """Approximate USD cost assuming a 40/60 input/output token split."""
    input_rate, output_rate = PROVIDER_COSTS.get(provider, (0.0, 0.0))
    cost = (tokens_used * 0.4 / 1000) * input_rate + (tokens_used * 0.6 / 1000) * output_rate
    return round(cost, 4)


@dataclass
class CitationCheckReport:
    """Results of one citation check run."""

    results: list[CitationResult] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)


class CitationChecker:
    """Fans prompts out to providers in bounded concurrent batches."""

    def __init__(
        self,
        providers: Mapping[str, ProviderClient],
        batch_size: Optional[int] = None,
    ):
        self._providers = dict(providers)
        self._batch_size = batch_size or settings.citation_batch_size

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)

    @property
    def providers(self) -> dict[str, ProviderClient]:
        return dict(self._providers)

    def _validate(
        self,
        prompts: Sequence[str],
        website: str,
        providers: Optional[Sequence[str]],
    ) -> tuple[list[str], list[str]]:
        if not website or not website.strip():
            raise CitationCheckError("Website URL is required")

        cleaned = [p.strip() for p in prompts if p and p.strip()]
        if not cleaned:
            raise CitationCheckError("At least one prompt is required")
        limit = min(MAX_PROMPTS_PER_ANALYSIS, settings.citation_max_prompts)
        if len(cleaned) > limit:
            raise CitationCheckError(f"Maximum {limit} prompts allowed")

        requested = list(providers) if providers else self.provider_names
        known = [p for p in dict.fromkeys(requested) if p in self._providers]
        unknown = [p for p in requested if p not in self._providers]
        if unknown:
            logger.warning("Ignoring unknown providers: %s", ", ".join(unknown))
        if not known:
            raise CitationCheckError("At least one provider is required")
        return cleaned, known

    async def _check_one(
        self,
        prompt_id: str,
        prompt: str,
        provider_name: str,
        website: str,
        brand_name: Optional[str],
    ) -> CitationResult:
        timestamp = datetime.now(timezone.utc).isoformat()
        provider = self._providers[provider_name]
        try:
            answer: ProviderResponse = await provider.query(prompt)
        except Exception as e:
            logger.error(
                "Citation query failed for provider %s: %s",
                provider_name,
                e,
                extra={"provider": provider_name},
            )
            return CitationResult(
                prompt=prompt,
                is_cited=False,
                prompt_id=prompt_id,
                provider=provider_name,
                model_used="error",
                response=f"Error: {e}",
                error=str(e),
                timestamp=timestamp,
            )

        is_cited, context = find_citation(answer.text, website, brand_name)
        competitors = extract_competitor_citations(answer.text, website, answer.sources)
        return CitationResult(
            prompt=prompt,
            is_cited=is_cited,
            competitors_cited=tuple(competitors),
            prompt_id=prompt_id,
            provider=provider_name,
            model_used=answer.model or provider.model,
            response=answer.text,
            citation_context=context,
            tokens_used=answer.tokens_used,
            cost=estimate_cost(provider_name, answer.tokens_used),
            timestamp=timestamp,
        )

    async def check_citations(
        self,
        prompts: Sequence[str],
        website: str,
        brand_name: Optional[str] = None,
        providers: Optional[Sequence[str]] = None,
    ) -> CitationCheckReport:
        """
        Query every prompt against every provider.

        Args:
            prompts: Questions to ask (1 to 10)
            website: Site whose citations are being checked
            brand_name: Optional brand name that also counts as a citation
            providers: Provider names; defaults to all registered providers

        Returns:
            CitationCheckReport with one result per prompt and provider

        Raises:
            CitationCheckError: If the request is invalid
        """
        prompts, provider_names = self._validate(prompts, website, providers)

        jobs = [
            (f"prompt-{index + 1}", prompt, name)
            for index, prompt in enumerate(prompts)
            for name in provider_names
        ]
        logger.info(
            "Checking citations for %s: %d prompts across %d providers",
            website,
            len(prompts),
            len(provider_names),
        )

        results: list[CitationResult] = []
        for start in range(0, len(jobs), self._batch_size):
            batch = jobs[start:start + self._batch_size]
            results.extend(
                await asyncio.gather(
                    *(
                        self._check_one(prompt_id, prompt, name, website, brand_name)
                        for prompt_id, prompt, name in batch
                    )
                )
            )

        rate = compute_citation_rate(results)
        total_cost = round(sum(r.cost for r in results), 4)
        summary = {
            "total_prompts": len(prompts),
            "total_checks": len(results),
            "cited_count": rate.cited_count,
            "citation_rate": rate.rate,
            "total_cost": total_cost,
            "total_tokens": sum(r.tokens_used for r in results),
            "errors": sum(1 for r in results if r.error),
        }
        logger.info(
            "Citation check complete: %d/%d cited, total cost $%.4f",
            rate.cited_count,
            len(results),
            total_cost,
        )
        return CitationCheckReport(results=results, summary=summary)


_checker: Optional[CitationChecker] = None


def get_citation_checker() -> CitationChecker:
    """FastAPI dependency returning the process-wide checker."""
    global _checker
    if _checker is None:
        _checker = CitationChecker(build_default_providers())
    return _checker
