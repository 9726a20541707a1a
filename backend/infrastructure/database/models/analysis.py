"""
Analysis database model.

One row per scoring run for one website. Rows are immutable after creation
and only ever removed by their owner.
"""

from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class AnalysisCategory(str, Enum):
    """Visibility categories derived from the score."""

    FEATURED_ANSWER = "Featured Answer"
    TOP_RESULT = "Top Result"
    VISIBLE = "Visible"
    BURIED = "Buried"


class Analysis(Base, TimestampMixin):
    """Citation analysis of a website across AI providers."""

    __tablename__ = "analyses"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Target
    website: Mapped[str] = mapped_column(String(500), nullable=False)
    normalized_website: Mapped[str] = mapped_column(String(500), nullable=False)
    brand_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Inputs
    keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    providers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Outputs
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    metrics: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    """
    Structure:
    {
        "content_clarity": 50,
        "semantic_richness": 40,
        "structured_data": 30,
        "natural_language": 60,
        "keyword_relevance": 25
    }
    """
    insights: Mapped[str] = mapped_column(Text, nullable=False, default="")
    predicted_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    recommendations: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    content_analysis: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Citation detail (AEO mode only)
    citation_results: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    citation_rate: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Provenance
    is_simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    simulation_seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    __table_args__ = (
        Index("ix_analyses_user_created", "user_id", "created_at"),
        Index("ix_analyses_user_website", "user_id", "normalized_website", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Analysis(id={self.id}, website={self.website}, score={self.score})>"

    @property
    def is_aeo(self) -> bool:
        """Whether the analysis carries per-query citation detail."""
        return self.citation_results is not None
