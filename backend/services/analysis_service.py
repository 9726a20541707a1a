"""
Analysis persistence and history.

Creates analyses (real or simulated depending on the caller's capabilities),
enforces monthly plan usage, and answers the history queries behind trends
and competitor views. Callers own the transaction; this service only flushes.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.capabilities import Capability, Session
from core.domain.analysis import RealResult, SimulatedResult
from core.domain.citation import CitationResult, Provider, Trend
from core.plans import get_plan_limit
from infrastructure.database.models.analysis import Analysis
from infrastructure.database.models.base import utcnow
from services.analysis_engine import PromptInput, build_report, materialize
from services.citation_checker import CitationChecker, CitationCheckError
from services.citation_scoring import compare_trend, competitor_snapshot, extract_competitors
from services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PROVIDERS = tuple(p.value for p in Provider)
CURRENT_ANALYSIS_KEY = "current_analysis:{user_id}"
CURRENT_ANALYSIS_TTL = 60 * 60 * 24 * 30


class UsageLimitExceeded(ValueError):
    """Monthly analysis allowance used up."""

    def __init__(self, used: int, limit: int):
        super().__init__(f"Monthly analysis limit reached ({used}/{limit})")
        self.used = used
        self.limit = limit


def normalize_website(url: str) -> str:
    """Canonical website key used to group analyses of the same site."""
    value = (url or "").strip().lower()
    for scheme in ("https://", "http://"):
        if value.startswith(scheme):
            value = value[len(scheme):]
            break
    if value.startswith("www."):
        value = value[4:]
    return value.rstrip("/")


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def stored_citation_results(analysis: Analysis) -> list[CitationResult]:
    return [
        CitationResult.from_dict(item)
        for item in (analysis.citation_results or [])
        if isinstance(item, dict)
    ]


@dataclass
class AnalysisRequest:
    website: str
    prompts: list[str]
    brand_name: Optional[str] = None
    providers: Optional[list[str]] = None


class AnalysisService:
    """Analysis lifecycle for a single database session."""

    def __init__(
        self,
        db: AsyncSession,
        kv_store: Optional[KeyValueStore] = None,
        checker: Optional[CitationChecker] = None,
    ):
        self.db = db
        self.kv_store = kv_store
        self.checker = checker

    # Usage

    async def count_monthly_analyses(self, user_id: str, now: Optional[datetime] = None) -> int:
        result = await self.db.execute(
            select(func.count(Analysis.id)).where(
                Analysis.user_id == user_id,
                Analysis.created_at >= month_start(now),
            )
        )
        return result.scalar_one()

    async def usage(self, session: Session) -> dict:
        """Usage figures for the current month."""
        user = session.user
        limit = get_plan_limit(user.subscription_tier, "analyses_per_month")
        used = await self.count_monthly_analyses(user.id)
        unlimited = session.can(Capability.BYPASS_USAGE_LIMITS)
        return {
            "used": used,
            "limit": None if unlimited else limit,
            "remaining": None if unlimited else max(limit - used, 0),
            "period_start": month_start(),
        }

    async def ensure_within_limit(self, session: Session, limit_override: Optional[int] = None) -> None:
        if session.can(Capability.BYPASS_USAGE_LIMITS):
            return
        user = session.user
        limit = limit_override or get_plan_limit(user.subscription_tier, "analyses_per_month")
        used = await self.count_monthly_analyses(user.id)
        if used >= limit:
            raise UsageLimitExceeded(used, limit)

    # Creation

    async def create_analysis(
        self,
        session: Session,
        request: AnalysisRequest,
        limit_override: Optional[int] = None,
    ) -> Analysis:
        """
        Run and persist a new analysis.

        Users holding REAL_ANALYSIS get live provider checks; everyone else
        gets a seeded simulation.

        Raises:
            UsageLimitExceeded: If the monthly allowance is used up
            CitationCheckError: If the request is invalid
        """
        user = session.user
        await self.ensure_within_limit(session, limit_override)

        prompt_limit = get_plan_limit(user.subscription_tier, "prompts_per_analysis")
        if session.is_admin:
            prompt_limit = max(prompt_limit, len(request.prompts))
        prompts = [p.strip() for p in request.prompts if p and p.strip()][:prompt_limit]
        prompt_inputs = [PromptInput(id=f"prompt-{i + 1}", text=p) for i, p in enumerate(prompts)]
        providers = list(dict.fromkeys(request.providers or DEFAULT_PROVIDERS))

        if session.can(Capability.REAL_ANALYSIS):
            if self.checker is None:
                raise RuntimeError("Citation checker is required for real analyses")
            report = await self.checker.check_citations(
                prompts, request.website, request.brand_name, providers
            )
            providers = sorted({r.provider for r in report.results if r.provider}, key=providers.index)
            result = RealResult(citation_results=tuple(report.results))
        else:
            # The free/trial path never calls a provider
            if not request.website or not request.website.strip():
                raise CitationCheckError("Website URL is required")
            if not prompt_inputs:
                raise CitationCheckError("At least one prompt is required")
            providers = [p for p in providers if p in DEFAULT_PROVIDERS]
            if not providers:
                raise CitationCheckError("At least one provider is required")
            result = SimulatedResult(seed=secrets.randbelow(2**31))

        materialized = materialize(
            result,
            prompt_inputs,
            request.website,
            brand_name=request.brand_name,
            providers=providers,
        )
        scored = build_report(materialized, prompt_inputs, request.website)

        analysis = Analysis(
            user_id=user.id,
            website=request.website.strip(),
            normalized_website=normalize_website(request.website),
            brand_name=request.brand_name,
            keywords=prompts,
            providers=providers,
            score=scored.score,
            metrics=scored.metrics,
            insights=scored.insights,
            predicted_rank=scored.predicted_rank,
            category=scored.category,
            recommendations=[r.to_dict() for r in scored.recommendations],
            content_analysis=materialized.content.to_dict(),
            citation_results=[r.to_dict() for r in materialized.citation_results],
            citation_rate=scored.citation.rate,
            is_simulated=materialized.is_simulated,
            simulation_seed=materialized.seed,
            model=",".join(providers),
            cost=materialized.cost,
            created_at=utcnow(),
        )
        self.db.add(analysis)
        await self.db.flush()

        if self.kv_store is not None:
            await self.kv_store.set(
                CURRENT_ANALYSIS_KEY.format(user_id=user.id),
                analysis.id,
                ttl=CURRENT_ANALYSIS_TTL,
            )

        logger.info(
            "Created %s analysis %s for %s (score %d)",
            "simulated" if analysis.is_simulated else "real",
            analysis.id,
            analysis.normalized_website,
            analysis.score,
            extra={"analysis_id": analysis.id, "user_id": user.id},
        )
        return analysis

    # Reads

    async def get_analysis(self, analysis_id: str, user_id: str) -> Optional[Analysis]:
        result = await self.db.execute(
            select(Analysis).where(Analysis.id == analysis_id, Analysis.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_analyses(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        website: Optional[str] = None,
    ) -> tuple[list[Analysis], int]:
        """Most recent first, with the unpaginated total."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(offset, 0)

        filters = [Analysis.user_id == user_id]
        if website:
            filters.append(Analysis.normalized_website == normalize_website(website))

        total = (
            await self.db.execute(select(func.count(Analysis.id)).where(*filters))
        ).scalar_one()
        rows = await self.db.execute(
            select(Analysis)
            .where(*filters)
            .order_by(Analysis.created_at.desc(), Analysis.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(rows.scalars().all()), total

    async def get_current_analysis(self, user_id: str) -> Optional[Analysis]:
        """The user's most recent analysis, served from the cache when possible."""
        if self.kv_store is not None:
            cached_id = await self.kv_store.get(CURRENT_ANALYSIS_KEY.format(user_id=user_id))
            if cached_id:
                analysis = await self.get_analysis(cached_id, user_id)
                if analysis is not None:
                    return analysis
        analyses, _ = await self.list_analyses(user_id, limit=1)
        return analyses[0] if analyses else None

    async def get_previous_analysis(
        self,
        user_id: str,
        website: str,
        before: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[Analysis]:
        """Most recent analysis of the same site created strictly before ``before``."""
        query = select(Analysis).where(
            Analysis.user_id == user_id,
            Analysis.normalized_website == normalize_website(website),
            Analysis.created_at < before,
        )
        if exclude_id:
            query = query.where(Analysis.id != exclude_id)
        result = await self.db.execute(
            query.order_by(Analysis.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_trend(self, analysis: Analysis) -> tuple[Trend, Optional[Analysis]]:
        previous = await self.get_previous_analysis(
            analysis.user_id,
            analysis.normalized_website,
            analysis.created_at,
            exclude_id=analysis.id,
        )
        trend = compare_trend(analysis.score, previous.score if previous else None)
        return trend, previous

    def get_competitors(self, analysis: Analysis, limit: Optional[int] = None) -> dict:
        """Ranked competitors and snapshot rows; empty for non-AEO analyses."""
        if not analysis.is_aeo:
            return {"competitors": [], "snapshot": [], "total_queries": 0}
        results = stored_citation_results(analysis)
        ranked = extract_competitors(results, limit=limit)
        return {
            "competitors": ranked,
            "snapshot": competitor_snapshot(ranked, len(results)),
            "total_queries": len(results),
        }

    async def get_history(
        self,
        user_id: str,
        website: str,
        limit: int = 20,
    ) -> list[Analysis]:
        """Analyses of one website, oldest first, for trend charts."""
        analyses, _ = await self.list_analyses(user_id, limit=limit, website=website)
        return list(reversed(analyses))

    # Deletion

    async def delete_analysis(self, analysis_id: str, user_id: str) -> bool:
        """Delete an owned analysis. Returns False if not found."""
        analysis = await self.get_analysis(analysis_id, user_id)
        if analysis is None:
            return False

        await self.db.delete(analysis)
        await self.db.flush()

        if self.kv_store is not None:
            await self.kv_store.delete(CURRENT_ANALYSIS_KEY.format(user_id=user_id))

        logger.info(
            "Deleted analysis %s",
            analysis_id,
            extra={"analysis_id": analysis_id, "user_id": user_id},
        )
        return True

    async def delete_all_for_user(self, user_id: str) -> int:
        result = await self.db.execute(delete(Analysis).where(Analysis.user_id == user_id))
        if self.kv_store is not None:
            await self.kv_store.delete(CURRENT_ANALYSIS_KEY.format(user_id=user_id))
        return result.rowcount or 0
