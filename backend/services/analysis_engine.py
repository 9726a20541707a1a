"""
Analysis engine.

Turns an AnalysisResult (real provider responses or a seeded simulation)
into the scored report stored with an analysis: citation rate, the five
sub-metrics, predicted rank, category, recommendations and insights.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from core.domain.analysis import (
    AnalysisResult,
    ContentAnalysis,
    Recommendation,
    RealResult,
    SimulatedResult,
    SimulationParameters,
)
from core.domain.citation import CitationRate, CitationResult, CompetitorCitation
from infrastructure.database.models.analysis import AnalysisCategory
from services.citation_checker import extract_domain
from services.citation_scoring import (
    compute_citation_rate,
    extract_competitors,
    round_half_up,
)

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 6

SIMULATED_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-haiku-20240307",
    "perplexity": "sonar",
}

METRIC_NAMES = (
    "content_clarity",
    "semantic_richness",
    "structured_data",
    "natural_language",
    "keyword_relevance",
)


@dataclass(frozen=True)
class PromptInput:
    id: str
    text: str


@dataclass
class MaterializedResult:
    """Concrete citation results and content scores for one analysis."""

    citation_results: list[CitationResult]
    content: ContentAnalysis
    is_simulated: bool
    seed: Optional[int] = None
    cost: float = 0.0


@dataclass
class AnalysisReport:
    """Everything derived from a materialized result."""

    score: int
    citation: CitationRate
    metrics: dict[str, int]
    quality_score: int
    predicted_rank: int
    category: str
    insights: str
    recommendations: list[Recommendation] = field(default_factory=list)


def predicted_rank(score: int) -> int:
    if score >= 85:
        return 1
    if score >= 75:
        return 2
    if score >= 65:
        return 3
    if score >= 55:
        return 5
    if score >= 45:
        return 7
    return 10


def category_for_score(score: int) -> str:
    if score >= 85:
        return AnalysisCategory.FEATURED_ANSWER.value
    if score >= 70:
        return AnalysisCategory.TOP_RESULT.value
    if score >= 55:
        return AnalysisCategory.VISIBLE.value
    return AnalysisCategory.BURIED.value


def compute_metrics(content: ContentAnalysis, citation_rate: int) -> dict[str, int]:
    """The five named sub-metrics of an analysis."""
    return {
        "content_clarity": content.bluf_score,
        "semantic_richness": content.content_depth,
        "structured_data": content.schema_score,
        "natural_language": content.readability_score,
        "keyword_relevance": citation_rate,
    }


def composite_score(metrics: dict[str, int]) -> int:
    """Legacy quality score: mean of the five sub-metrics."""
    return round_half_up(sum(metrics.get(name, 0) for name in METRIC_NAMES), len(METRIC_NAMES))


def _simulate(
    result: SimulatedResult,
    prompts: Sequence[PromptInput],
    website: str,
    brand_name: Optional[str],
    providers: Sequence[str],
    timestamp: str,
) -> MaterializedResult:
    params: SimulationParameters = result.parameters
    rng = random.Random(result.seed)
    user_domain = extract_domain(website)
    pool = [
        d for d in params.competitor_pool
        if d != user_domain and not d.endswith("." + user_domain)
    ]

    citation_results = []
    for prompt in prompts:
        for provider in providers:
            is_cited = rng.random() < params.cite_probability
            count = min(rng.randint(params.min_competitors, params.max_competitors), len(pool))
            picked = rng.sample(pool, count)
            competitors = tuple(
                CompetitorCitation(
                    domain=domain,
                    context=f"{domain} was mentioned as a leading solution...",
                    position=index + 1,
                )
                for index, domain in enumerate(picked)
            )
            citation_results.append(
                CitationResult(
                    prompt=prompt.text,
                    is_cited=is_cited,
                    competitors_cited=competitors,
                    prompt_id=prompt.id,
                    provider=provider,
                    model_used=SIMULATED_MODELS.get(provider, provider),
                    response=(
                        f"[Simulated {provider} response for demo purposes. This is sample "
                        f"content showing how the AI might respond to \"{prompt.text}\"]"
                    ),
                    citation_context=(
                        f"...{brand_name or website} offers excellent solutions for this..."
                        if is_cited
                        else None
                    ),
                    tokens_used=rng.randint(*params.tokens_range),
                    cost=params.cost_per_check,
                    timestamp=timestamp,
                )
            )

    content = ContentAnalysis(
        bluf_score=rng.randint(*params.bluf_range),
        schema_score=rng.randint(*params.schema_range),
        readability_score=rng.randint(*params.readability_range),
        content_depth=rng.randint(*params.depth_range),
    )
    # Demo data is free to produce
    return MaterializedResult(
        citation_results=citation_results,
        content=content,
        is_simulated=True,
        seed=result.seed,
        cost=0.0,
    )


def materialize(
    result: AnalysisResult,
    prompts: Sequence[PromptInput],
    website: str,
    brand_name: Optional[str] = None,
    providers: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> MaterializedResult:
    """Resolve an AnalysisResult into concrete citation results.

    A SimulatedResult always yields the same citation outcomes and content
    scores for the same seed, parameters and inputs.
    """
    if isinstance(result, RealResult):
        results = list(result.citation_results)
        return MaterializedResult(
            citation_results=results,
            content=result.content,
            is_simulated=False,
            cost=round(sum(r.cost for r in results), 4),
        )
    if isinstance(result, SimulatedResult):
        timestamp = (now or datetime.now(timezone.utc)).isoformat()
        return _simulate(result, prompts, website, brand_name, providers, timestamp)
    raise TypeError(f"Unsupported analysis result: {type(result).__name__}")


def generate_recommendations(
    citation_results: Sequence[CitationResult],
    content: ContentAnalysis,
    prompts: Sequence[PromptInput],
) -> list[Recommendation]:
    """Up to six AEO recommendations, in fixed order."""
    rate = compute_citation_rate(citation_results)
    cited_ids = {r.prompt_id for r in citation_results if r.is_cited}
    uncited = [p for p in prompts if p.id not in cited_ids]
    top_competitors = [c.domain for c in extract_competitors(citation_results, limit=3)]

    recommendations: list[Recommendation] = []

    if not rate.insufficient_data and rate.rate < 30:
        recommendations.append(
            Recommendation(
                id="aeo-1",
                title="Increase Your AI Visibility",
                description=(
                    f"You were cited in only {rate.rate}% of queries. To improve:\n\n"
                    "1. Create content that directly answers the questions in your prompts\n"
                    "2. Use clear, factual language that AI can quote\n"
                    "3. Add schema markup to help AI verify your expertise"
                ),
                priority="high",
                difficulty="medium",
                estimated_time="2-4 hours",
                expected_impact="Could increase citation rate by 20-40%",
                related_prompts=[p.id for p in uncited[:3]],
            )
        )

    if content.schema_score < 40:
        recommendations.append(
            Recommendation(
                id="aeo-2",
                title="Add Structured Data for AI Recognition",
                description=(
                    "AI assistants use schema.org markup to verify information. Add:\n\n"
                    "- Organization schema (who you are)\n"
                    "- FAQPage schema (for Q&A content)\n"
                    "- Product/Service schema (what you offer)\n\n"
                    "This helps AI trust and cite your content."
                ),
                priority="high",
                difficulty="medium",
                estimated_time="1-2 hours",
                expected_impact="Increase AI trust score by ~25%",
            )
        )

    if content.bluf_score < 50:
        recommendations.append(
            Recommendation(
                id="aeo-3",
                title="Put Answers First (BLUF Format)",
                description=(
                    "AI extracts the first 1-2 sentences after headings. Currently, many of "
                    "your sections bury the main point.\n\n"
                    "For each section:\n"
                    "- Start with a direct answer or key fact\n"
                    "- Then provide supporting details\n"
                    '- Use "In short," or "The answer is" to signal conclusions'
                ),
                priority="high",
                difficulty="easy",
                estimated_time="1-2 hours",
                expected_impact="Improve citation rate by 15-25%",
            )
        )

    if top_competitors:
        listing = "\n".join(f"{i + 1}. {domain}" for i, domain in enumerate(top_competitors))
        recommendations.append(
            Recommendation(
                id="aeo-4",
                title="Study What Competitors Are Doing Right",
                description=(
                    f"These sites were frequently cited instead of you:\n\n{listing}\n\n"
                    "Analyze their content to see:\n"
                    "- How they structure answers\n"
                    "- What schema markup they use\n"
                    "- How they establish expertise"
                ),
                priority="medium",
                difficulty="easy",
                estimated_time="1 hour",
                expected_impact="Learn citation-winning strategies",
            )
        )

    if uncited:
        examples = " and ".join(f'"{p.text}"' for p in uncited[:2])
        recommendations.append(
            Recommendation(
                id="aeo-5",
                title="Create Content for Uncited Prompts",
                description=(
                    f"You weren't cited for prompts like {examples}.\n\n"
                    "Create dedicated pages or sections that directly answer these questions:\n"
                    "- Use the question as a heading\n"
                    "- Provide a clear, authoritative answer\n"
                    "- Include supporting data and examples"
                ),
                priority="high",
                difficulty="medium",
                estimated_time="2-3 hours per prompt",
                expected_impact="Target specific citation opportunities",
                related_prompts=[p.id for p in uncited],
            )
        )

    if content.readability_score < 50:
        recommendations.append(
            Recommendation(
                id="aeo-6",
                title="Simplify Your Writing for AI",
                description=(
                    "Complex writing makes it harder for AI to extract and cite your content.\n\n"
                    "Improve readability by:\n"
                    "- Using shorter sentences (15-20 words)\n"
                    "- Replacing jargon with common terms\n"
                    "- Breaking up long paragraphs\n"
                    "- Using bullet points for lists"
                ),
                priority="medium",
                difficulty="easy",
                estimated_time="1-2 hours",
                expected_impact="Improve citation accuracy by 10-15%",
            )
        )

    return recommendations[:MAX_RECOMMENDATIONS]


def generate_insights(
    website: str,
    rate: CitationRate,
    citation_results: Sequence[CitationResult],
    is_simulated: bool,
) -> str:
    if rate.insufficient_data:
        return (
            f"Not enough data to score {website} yet. Run an analysis with at least "
            "one prompt to see how often AI assistants cite your site."
        )

    text = (
        f"{website} was cited in {rate.cited_count} of {rate.total_count} AI answers "
        f"({rate.rate}% citation rate)."
    )
    leaders = extract_competitors(citation_results, limit=1)
    if leaders:
        leader = leaders[0]
        noun = "answer" if leader.count == 1 else "answers"
        text += f" The most cited competitor was {leader.domain}, appearing in {leader.count} {noun}."
    if is_simulated:
        text = (
            "This demo shows how we'd analyze your site. "
            + text
            + " Upgrade to run live checks against real AI assistants."
        )
    return text


def build_report(
    materialized: MaterializedResult,
    prompts: Sequence[PromptInput],
    website: str,
) -> AnalysisReport:
    """Score a materialized result."""
    rate = compute_citation_rate(materialized.citation_results)
    metrics = compute_metrics(materialized.content, rate.rate)
    score = rate.rate
    logger.debug(
        "Scored %s: rate=%d cited=%d/%d simulated=%s",
        website,
        rate.rate,
        rate.cited_count,
        rate.total_count,
        materialized.is_simulated,
    )
    return AnalysisReport(
        score=score,
        citation=rate,
        metrics=metrics,
        quality_score=composite_score(metrics),
        predicted_rank=predicted_rank(score),
        category=category_for_score(score),
        insights=generate_insights(
            website, rate, materialized.citation_results, materialized.is_simulated
        ),
        recommendations=generate_recommendations(
            materialized.citation_results, materialized.content, prompts
        ),
    )
