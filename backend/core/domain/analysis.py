"""Analysis domain entities."""
from dataclasses import asdict, dataclass, field
from typing import Any, Union

from .citation import CitationResult

SIMULATED_COMPETITORS = (
    "hubspot.com",
    "mailchimp.com",
    "salesforce.com",
    "zendesk.com",
    "intercom.com",
    "drift.com",
    "freshworks.com",
    "zoho.com",
)


@dataclass(frozen=True)
class ContentAnalysis:
    """On-page content scores, each 0-100."""

    bluf_score: int = 50
    schema_score: int = 30
    readability_score: int = 60
    content_depth: int = 40

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class Recommendation:
    """Actionable improvement attached to an analysis."""

    id: str
    title: str
    description: str
    priority: str  # high, medium, low
    difficulty: str  # easy, medium, hard
    estimated_time: str
    expected_impact: str
    related_prompts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SimulationParameters:
    """Knobs for generating demo data; every range is inclusive."""

    competitor_pool: tuple[str, ...] = SIMULATED_COMPETITORS
    cite_probability: float = 0.4
    min_competitors: int = 2
    max_competitors: int = 4
    bluf_range: tuple[int, int] = (40, 69)
    schema_range: tuple[int, int] = (20, 59)
    readability_range: tuple[int, int] = (50, 79)
    depth_range: tuple[int, int] = (35, 69)
    tokens_range: tuple[int, int] = (500, 999)
    cost_per_check: float = 0.02


@dataclass(frozen=True)
class RealResult:
    """Analysis backed by actual provider responses."""

    citation_results: tuple[CitationResult, ...]
    content: ContentAnalysis = field(default_factory=ContentAnalysis)


@dataclass(frozen=True)
class SimulatedResult:
    """Analysis whose data is generated deterministically from a seed."""

    seed: int
    parameters: SimulationParameters = field(default_factory=SimulationParameters)


AnalysisResult = Union[RealResult, SimulatedResult]
