"""
API key management routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_session, require_capability
from api.middleware.rate_limit import get_client_ip, get_rate_limit, limiter
from api.schemas.api_key import (
    ApiKeyCreatedResponse,
    ApiKeyCreateRequest,
    ApiKeyListResponse,
    ApiKeyResponse,
)
from core.capabilities import Capability, Session
from infrastructure.database.connection import get_db
from infrastructure.database.models.admin import AuditAction, AuditTargetType
from services.api_keys import ApiKeyError, ApiKeyService
from services.audit import record_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.post("", response_model=ApiKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("api_key_create"))
async def create_api_key(
    request: Request,
    body: ApiKeyCreateRequest,
    session: Annotated[Session, Depends(require_capability(Capability.API_ACCESS))],
    db: AsyncSession = Depends(get_db),
):
    """
    Create an API key for the public API.

    The full key is only included in this response.
    """
    try:
        api_key, generated = await ApiKeyService(db).create_key(session, body.name)
    except ApiKeyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    await record_audit(
        db,
        actor_user_id=session.user.id,
        action=AuditAction.API_KEY_CREATED,
        target_type=AuditTargetType.API_KEY,
        target_id=api_key.id,
        metadata={"key_prefix": api_key.key_prefix},
        ip_address=get_client_ip(request),
    )
    await db.commit()

    return ApiKeyCreatedResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        created_at=api_key.created_at,
        key=generated.raw_key,
    )


@router.get("", response_model=ApiKeyListResponse)
async def list_api_keys(
    session: Annotated[Session, Depends(get_current_session)],
    include_revoked: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """List the user's API keys."""
    keys = await ApiKeyService(db).list_keys(session.user.id, include_revoked=include_revoked)
    return ApiKeyListResponse(items=keys, total=len(keys))


@router.delete("/{key_id}", response_model=ApiKeyResponse)
async def revoke_api_key(
    request: Request,
    key_id: str,
    session: Annotated[Session, Depends(get_current_session)],
    db: AsyncSession = Depends(get_db),
):
    """
    Revoke an API key. Revoked keys stop authenticating immediately.
    """
    api_key = await ApiKeyService(db).revoke_key(key_id, session.user.id)
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found",
        )

    await record_audit(
        db,
        actor_user_id=session.user.id,
        action=AuditAction.API_KEY_REVOKED,
        target_type=AuditTargetType.API_KEY,
        target_id=api_key.id,
        ip_address=get_client_ip(request),
    )
    await db.commit()
    return api_key
