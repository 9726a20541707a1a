"""
Shared API utility functions.
"""

import math
from typing import Optional

from fastapi import HTTPException, status

from api.schemas.analysis import AnalysisCreateRequest
from core.capabilities import Session
from infrastructure.database.models.analysis import Analysis
from services.analysis_service import AnalysisRequest, AnalysisService, UsageLimitExceeded
from services.citation_checker import CitationCheckError


def escape_like(value: str) -> str:
    """Escape LIKE wildcards for safe use in SQL LIKE/ILIKE patterns."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def page_count(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


async def run_analysis(
    service: AnalysisService,
    session: Session,
    body: AnalysisCreateRequest,
    limit_override: Optional[int] = None,
) -> Analysis:
    """Create an analysis, mapping domain errors to HTTP errors."""
    try:
        return await service.create_analysis(
            session,
            AnalysisRequest(
                website=body.website,
                prompts=body.prompts,
                brand_name=body.brand_name,
                providers=body.providers,
            ),
            limit_override=limit_override,
        )
    except UsageLimitExceeded as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"{e}. Please upgrade your plan.",
        )
    except CitationCheckError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
