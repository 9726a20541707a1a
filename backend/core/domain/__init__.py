# Domain Entities
# Pure business objects with no external dependencies
from .analysis import (
    AnalysisResult,
    ContentAnalysis,
    RealResult,
    Recommendation,
    SimulatedResult,
    SimulationParameters,
)
from .citation import (
    CitationRate,
    CitationResult,
    CompetitorAggregate,
    CompetitorCitation,
    Provider,
    Trend,
    TrendDirection,
)

__all__ = [
    "AnalysisResult",
    "CitationRate",
    "CitationResult",
    "CompetitorAggregate",
    "CompetitorCitation",
    "ContentAnalysis",
    "Provider",
    "RealResult",
    "Recommendation",
    "SimulatedResult",
    "SimulationParameters",
    "Trend",
    "TrendDirection",
]
