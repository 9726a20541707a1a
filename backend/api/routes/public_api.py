"""
Public API for Enterprise integrations, authenticated by API key.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_api_key_session
from api.middleware.rate_limit import get_rate_limit, limiter
from api.routes.analyses import get_analysis_service
from api.schemas.analysis import AnalysisCreateRequest, AnalysisListResponse, AnalysisResponse
from api.utils import page_count, run_analysis
from core.capabilities import Session
from infrastructure.database.connection import get_db
from services.analysis_service import AnalysisService

logger = logging.getLogger(__name__)

# Monthly analyses available through the public API
PUBLIC_API_MONTHLY_LIMIT = 400

router = APIRouter(prefix="/public", tags=["Public API"])


@router.post("/analyze", response_model=AnalysisResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("public_api"))
async def analyze(
    request: Request,
    body: AnalysisCreateRequest,
    session: Annotated[Session, Depends(get_api_key_session)],
    service: AnalysisService = Depends(get_analysis_service),
    db: AsyncSession = Depends(get_db),
):
    """Run an analysis; counts against the account's monthly allowance."""
    analysis = await run_analysis(
        service, session, body, limit_override=PUBLIC_API_MONTHLY_LIMIT
    )
    await db.commit()
    logger.info("Public API analysis %s created", analysis.id, extra={"user_id": session.user.id})
    return analysis


@router.get("/analyses", response_model=AnalysisListResponse)
@limiter.limit(get_rate_limit("public_api"))
async def list_analyses(
    request: Request,
    session: Annotated[Session, Depends(get_api_key_session)],
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    website: str | None = None,
    service: AnalysisService = Depends(get_analysis_service),
):
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


@router.get("/analyses/{analysis_id}", response_model=AnalysisResponse)
@limiter.limit(get_rate_limit("public_api"))
async def get_analysis(
    request: Request,
    analysis_id: str,
    session: Annotated[Session, Depends(get_api_key_session)],
    service: AnalysisService = Depends(get_analysis_service),
):
    analysis = await service.get_analysis(analysis_id, session.user.id)
    if not analysis:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Analysis not found",
        )
    return analysis
