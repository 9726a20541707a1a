"""Citation domain entities."""
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class Provider(str, Enum):
    """AI providers queried for citation checks."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    PERPLEXITY = "perplexity"


class TrendDirection(str, Enum):
    """Direction of change between two analyses."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


@dataclass(frozen=True)
class CompetitorCitation:
    """One competitor mention within one query result."""

    domain: Optional[str]
    context: Optional[str] = None
    url: Optional[str] = None
    position: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompetitorCitation":
        return cls(
            domain=data.get("domain"),
            context=data.get("context"),
            url=data.get("url"),
            position=int(data.get("position") or 0),
        )


@dataclass(frozen=True)
class CitationResult:
    """Outcome of one prompt sent to one provider."""

    prompt: str
    is_cited: bool
    competitors_cited: tuple[CompetitorCitation, ...] = ()
    prompt_id: Optional[str] = None
    provider: Optional[str] = None
    model_used: Optional[str] = None
    response: str = ""
    citation_context: Optional[str] = None
    tokens_used: int = 0
    cost: float = 0.0
    error: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CitationResult":
        """Build from a persisted JSON record, tolerating missing keys."""
        competitors = tuple(
            CompetitorCitation.from_dict(c)
            for c in (data.get("competitors_cited") or [])
            if isinstance(c, dict)
        )
        return cls(
            prompt=data.get("prompt") or "",
            is_cited=bool(data.get("is_cited")),
            competitors_cited=competitors,
            prompt_id=data.get("prompt_id"),
            provider=data.get("provider"),
            model_used=data.get("model_used"),
            response=data.get("response") or "",
            citation_context=data.get("citation_context"),
            tokens_used=int(data.get("tokens_used") or 0),
            cost=float(data.get("cost") or 0.0),
            error=data.get("error"),
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["competitors_cited"] = [asdict(c) for c in self.competitors_cited]
        return data


@dataclass(frozen=True)
class CitationRate:
    """Aggregate citation rate over one analysis."""

    rate: int
    cited_count: int
    total_count: int
    insufficient_data: bool = False


@dataclass
class CompetitorAggregate:
    """Competitor domain merged across every result of an analysis."""

    domain: str
    count: int = 0
    contexts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Trend:
    """Classified change between the latest and the preceding score."""

    direction: TrendDirection
    delta: int
