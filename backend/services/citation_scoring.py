"""
Citation Aggregation & Scoring.

Pure functions over already-fetched citation results:
- Aggregate scorer: overall citation rate with raw counts
- Competitor extractor: frequency ranking of competitor domains
- Trend comparator: up/down/stable against the preceding analysis

None of these raise on sparse input; "no data" degrades to zero/neutral
values and inputs are never mutated.
"""

import logging
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Sequence

from core.domain.citation import (
    CitationRate,
    CitationResult,
    CompetitorAggregate,
    Trend,
    TrendDirection,
)

logger = logging.getLogger(__name__)

# Dead-band around zero that absorbs noise between repeated provider queries
TREND_THRESHOLD = 5

# Context snippets kept per competitor domain
MAX_CONTEXTS_PER_DOMAIN = 5

# Competitors shown in the performance snapshot
SNAPSHOT_SIZE = 10


def round_half_up(numerator: int, denominator: int) -> int:
    """Round numerator/denominator to the nearest integer, halves going up."""
    return (2 * numerator + denominator) // (2 * denominator)


def compute_citation_rate(results: Sequence[CitationResult]) -> CitationRate:
    """Percentage of results in which the target site was cited."""
    total = len(results)
    if total == 0:
        return CitationRate(rate=0, cited_count=0, total_count=0, insufficient_data=True)

    cited = sum(1 for r in results if r.is_cited)
    return CitationRate(
        rate=round_half_up(100 * cited, total),
        cited_count=cited,
        total_count=total,
    )


def _field(obj: Any, name: str) -> Any:
    """Read ``name`` from a dataclass or from a persisted JSON mapping."""
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_competitors(
    results: Iterable[CitationResult | Mapping[str, Any]],
    limit: Optional[int] = None,
) -> list[CompetitorAggregate]:
    """Merge competitor mentions by domain and rank them by citation count.

    Results may be CitationResult objects or the JSON stored on an analysis.
    Domains merge on their exact string. Ties keep the order in which domains
    were first seen. Mentions with a missing or blank domain are skipped.
    """
    # dicts preserve insertion order, which is the first-seen tiebreak
    accumulator: dict[str, CompetitorAggregate] = {}
    skipped = 0

    for result in results:
        for citation in _field(result, "competitors_cited") or ():
            domain = _field(citation, "domain")
            if not isinstance(domain, str) or not domain.strip():
                skipped += 1
                continue

            entry = accumulator.get(domain)
            if entry is None:
                entry = CompetitorAggregate(domain=domain)
                accumulator[domain] = entry

            entry.count += 1
            context = _field(citation, "context")
            if (
                context
                and context not in entry.contexts
                and len(entry.contexts) < MAX_CONTEXTS_PER_DOMAIN
            ):
                entry.contexts.append(context)

    if skipped:
        logger.debug("Skipped %d competitor citations without a domain", skipped)

    # sorted() is stable
    ranked = sorted(accumulator.values(), key=lambda c: c.count, reverse=True)
    if limit is not None:
        ranked = ranked[: max(limit, 0)]
    return ranked


def competitor_snapshot(
    competitors: Sequence[CompetitorAggregate],
    total_queries: int,
    top: int = SNAPSHOT_SIZE,
) -> list[dict]:
    """Performance rows for the leading competitors of one analysis."""
    rows = []
    for competitor in competitors[:top]:
        rate = round_half_up(100 * competitor.count, total_queries) if total_queries > 0 else 0
        noun = "time" if competitor.count == 1 else "times"
        rows.append(
            {
                "domain": competitor.domain,
                "citation_count": competitor.count,
                "citation_rate": rate,
                "base_score": min(95, 60 + rate),
                "contexts": list(competitor.contexts),
                "insight": f"Cited {competitor.count} {noun} by AI assistants",
            }
        )
    return rows


def compare_trend(latest_score: int, previous_score: Optional[int]) -> Trend:
    """Classify the change from the previous score to the latest one."""
    if previous_score is None:
        return Trend(direction=TrendDirection.STABLE, delta=0)

    delta = latest_score - previous_score
    if delta > TREND_THRESHOLD:
        direction = TrendDirection.UP
    elif delta < -TREND_THRESHOLD:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.STABLE
    return Trend(direction=direction, delta=delta)
