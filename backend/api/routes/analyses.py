"""
Analysis API routes.

Create, browse and delete citation analyses, plus the trend, competitor and
history views derived from them.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_session
from api.middleware.rate_limit import get_client_ip, get_rate_limit, limiter
from api.schemas.analysis import (
    AnalysisCreateRequest,
    AnalysisListResponse,
    AnalysisResponse,
    CompetitorsResponse,
    HistoryPoint,
    HistoryResponse,
    TrendResponse,
    UsageResponse,
)
from api.utils import page_count, run_analysis
from core.capabilities import Capability, Session
from infrastructure.database.connection import get_db
from infrastructure.database.models.admin import AuditAction, AuditTargetType
from infrastructure.database.models.analysis import Analysis
from services.analysis_service import AnalysisService
from services.audit import record_audit
from services.citation_checker import CitationChecker, get_citation_checker
from services.kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["Analyses"])


def get_analysis_service(
    db: AsyncSession = Depends(get_db),
    kv_store: KeyValueStore = Depends(get_kv_store),
    checker: CitationChecker = Depends(get_citation_checker),
) -> AnalysisService:
    return AnalysisService(db, kv_store=kv_store, checker=checker)


def trend_response(analysis: Analysis, trend, previous: Optional[Analysis]) -> TrendResponse:
    return TrendResponse(
        analysis_id=analysis.id,
        direction=trend.direction.value,
        delta=trend.delta,
        current_score=analysis.score,
        previous_score=previous.score if previous else None,
        previous_analysis_id=previous.id if previous else None,
        previous_created_at=previous.created_at if previous else None,
    )


async def _get_owned(service: AnalysisService, analysis_id: str, user_id: str) -> Analysis:
    analysis = await service.get_analysis(analysis_id, user_id)
    if not analysis:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Analysis not found",
        )
    return analysis


@router.post("", response_model=AnalysisResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("analysis"))
async def create_analysis(
    request: Request,
    body: AnalysisCreateRequest,
    session: Annotated[Session, Depends(get_current_session)],
    service: AnalysisService = Depends(get_analysis_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Analyze how often AI assistants cite a website.

    Paid plans query the live providers; free and trial accounts receive a
    seeded simulation marked ``is_simulated``.
    """
    analysis = await run_analysis(service, session, body)
    await db.commit()
    return analysis


@router.get("", response_model=AnalysisListResponse)
async def list_analyses(
    session: Annotated[Session, Depends(get_current_session)],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    website: Optional[str] = None,
    service: AnalysisService = Depends(get_analysis_service),
):
    """
    List the user's analyses, most recent first.
    """
    items, total = await service.list_analyses(
        session.user.id,
        limit=page_size,
        offset=(page - 1) * page_size,
        website=website,
    )
    return AnalysisListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=page_count(total, page_size),
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    session: Annotated[Session, Depends(get_current_session)],
    service: AnalysisService = Depends(get_analysis_service),
):
    """Analyses used this month against the plan allowance."""
    usage = await service.usage(session)
    return UsageResponse(
        **usage,
        subscription_tier=session.user.subscription_tier,
        real_analysis=session.can(Capability.REAL_ANALYSIS),
    )


@router.get("/current", response_model=AnalysisResponse)
async def get_current_analysis(
    session: Annotated[Session, Depends(get_current_session)],
    service: AnalysisService = Depends(get_analysis_service),
):
    """The user's most recent analysis."""
    analysis = await service.get_current_analysis(session.user.id)
    if not analysis:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No analyses yet",
        )
    return analysis


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    session: Annotated[Session, Depends(get_current_session)],
    website: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    service: AnalysisService = Depends(get_analysis_service),
):
    """
    Score history for one website, oldest first, with the latest trend.
    """
    analyses = await service.get_history(session.user.id, website, limit=limit)
    trend = None
    if analyses:
        latest = analyses[-1]
        latest_trend, previous = await service.get_trend(latest)
        trend = trend_response(latest, latest_trend, previous)
    return HistoryResponse(
        website=website,
        points=[HistoryPoint.model_validate(a) for a in analyses],
        trend=trend,
    )


@router.get("/{analysis_id}", response_model=AnalysisResponse)
async def get_analysis(
    analysis_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    service: AnalysisService = Depends(get_analysis_service),
):
    """
    Get an analysis by ID.
    """
    return await _get_owned(service, analysis_id, session.user.id)


@router.get("/{analysis_id}/trend", response_model=TrendResponse)
async def get_analysis_trend(
    analysis_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    service: AnalysisService = Depends(get_analysis_service),
):
    """Change against the previous analysis of the same website."""
    analysis = await _get_owned(service, analysis_id, session.user.id)
    trend, previous = await service.get_trend(analysis)
    return trend_response(analysis, trend, previous)


@router.get("/{analysis_id}/competitors", response_model=CompetitorsResponse)
async def get_analysis_competitors(
    analysis_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    limit: Optional[int] = Query(None, ge=1, le=100),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Competitor domains cited in place of, or alongside, the website."""
    analysis = await _get_owned(service, analysis_id, session.user.id)
    competitors = service.get_competitors(analysis, limit=limit)
    return CompetitorsResponse(
        analysis_id=analysis.id,
        total_queries=competitors["total_queries"],
        competitors=[
            {"domain": c.domain, "count": c.count, "contexts": c.contexts}
            for c in competitors["competitors"]
        ],
        snapshot=competitors["snapshot"],
    )


@router.delete("/{analysis_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_analysis(
    request: Request,
    analysis_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    service: AnalysisService = Depends(get_analysis_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete an analysis.
    """
    deleted = await service.delete_analysis(analysis_id, session.user.id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Analysis not found",
        )
    await record_audit(
        db,
        actor_user_id=session.user.id,
        action=AuditAction.ANALYSIS_DELETED,
        target_type=AuditTargetType.ANALYSIS,
        target_id=analysis_id,
        ip_address=get_client_ip(request),
    )
    await db.commit()
