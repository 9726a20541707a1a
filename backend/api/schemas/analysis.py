"""
Analysis request and response schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.plans import MAX_PROMPTS_PER_ANALYSIS
from core.domain.citation import Provider


class AnalysisCreateRequest(BaseModel):
    """Request to analyze a website's visibility in AI answers."""

    website: str = Field(..., min_length=1, max_length=500)
    prompts: list[str] = Field(..., min_length=1, max_length=MAX_PROMPTS_PER_ANALYSIS)
    brand_name: Optional[str] = Field(None, max_length=255)
    providers: Optional[list[str]] = Field(
        None, description="Subset of openai, anthropic, perplexity; all when omitted"
    )

    @field_validator("website")
    @classmethod
    def website_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Website URL is required")
        return v

    @field_validator("prompts")
    @classmethod
    def prompts_not_blank(cls, v: list[str]) -> list[str]:
        cleaned = [p.strip() for p in v if p and p.strip()]
        if not cleaned:
            raise ValueError("At least one prompt is required")
        for prompt in cleaned:
            if len(prompt) > 500:
                raise ValueError("Prompts must be at most 500 characters")
        return cleaned

    @field_validator("providers")
    @classmethod
    def providers_known(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        known = {p.value for p in Provider}
        cleaned = [p.strip().lower() for p in v if p and p.strip()]
        if not any(p in known for p in cleaned):
            raise ValueError("At least one of openai, anthropic, perplexity is required")
        return cleaned

    model_config = {
        "json_schema_extra": {
            "example": {
                "website": "https://example.com",
                "prompts": ["What are the best CRM tools for startups?"],
                "brand_name": "Example",
                "providers": ["openai", "perplexity"],
            }
        }
    }


class CompetitorCitationResponse(BaseModel):
    domain: Optional[str] = None
    context: Optional[str] = None
    url: Optional[str] = None
    position: int = 0


class CitationResultResponse(BaseModel):
    """One prompt asked of one provider."""

    prompt: str
    prompt_id: Optional[str] = None
    provider: Optional[str] = None
    model_used: Optional[str] = None
    is_cited: bool
    citation_context: Optional[str] = None
    competitors_cited: list[CompetitorCitationResponse] = Field(default_factory=list)
    response: str = ""
    tokens_used: int = 0
    cost: float = 0.0
    error: Optional[str] = None
    timestamp: Optional[str] = None


class RecommendationResponse(BaseModel):
    id: str
    title: str
    description: str
    priority: str
    difficulty: str
    estimated_time: str
    expected_impact: str
    related_prompts: list[str] = Field(default_factory=list)


class AnalysisSummaryResponse(BaseModel):
    """Analysis row without per-query detail, for lists."""

    id: str
    website: str
    brand_name: Optional[str] = None
    score: int
    category: str
    predicted_rank: int
    citation_rate: Optional[int] = None
    is_simulated: bool
    providers: list[str] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnalysisResponse(AnalysisSummaryResponse):
    """Full analysis."""

    normalized_website: str
    keywords: list[str] = Field(default_factory=list)
    metrics: dict[str, int] = Field(default_factory=dict)
    insights: str = ""
    recommendations: list[RecommendationResponse] = Field(default_factory=list)
    content_analysis: Optional[dict[str, int]] = None
    citation_results: Optional[list[CitationResultResponse]] = None
    simulation_seed: Optional[int] = None
    model: Optional[str] = None
    cost: float = 0.0


class AnalysisListResponse(BaseModel):
    """Paginated analyses, most recent first."""

    items: list[AnalysisSummaryResponse]
    total: int
    page: int
    page_size: int
    pages: int


class TrendResponse(BaseModel):
    """Change against the previous analysis of the same website."""

    analysis_id: str
    direction: str
    delta: int
    current_score: int
    previous_score: Optional[int] = None
    previous_analysis_id: Optional[str] = None
    previous_created_at: Optional[datetime] = None


class CompetitorResponse(BaseModel):
    domain: str
    count: int
    contexts: list[str] = Field(default_factory=list)


class CompetitorSnapshotResponse(BaseModel):
    domain: str
    citation_count: int
    citation_rate: int
    base_score: int
    insight: str


class CompetitorsResponse(BaseModel):
    """Competitors cited across an analysis."""

    analysis_id: str
    total_queries: int
    competitors: list[CompetitorResponse] = Field(default_factory=list)
    snapshot: list[CompetitorSnapshotResponse] = Field(default_factory=list)


class HistoryPoint(BaseModel):
    id: str
    score: int
    citation_rate: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HistoryResponse(BaseModel):
    """Scores of one website over time, oldest first."""

    website: str
    points: list[HistoryPoint]
    trend: Optional[TrendResponse] = None


class UsageResponse(BaseModel):
    """Monthly analysis usage; ``limit`` is null when unlimited."""

    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    period_start: datetime
    subscription_tier: str
    real_analysis: bool
