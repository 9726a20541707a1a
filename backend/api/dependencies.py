"""
API dependencies for authentication and authorization.

Roles and subscriptions are resolved into a capability set once per request
(``get_current_session``); route guards only ever check capabilities.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.routes.auth import get_current_user
from core.capabilities import Capability, Session
from core.security.api_keys import API_KEY_PREFIX
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.api_keys import ApiKeyService


async def get_current_session(
    current_user: Annotated[User, Depends(get_current_user)],
) -> Session:
    """Authenticated user plus resolved capabilities."""
    return Session.for_user(current_user)


def require_capability(capability: Capability):
    """Dependency factory rejecting sessions that lack ``capability``."""

    async def _require(
        session: Annotated[Session, Depends(get_current_session)],
    ) -> Session:
        if not session.can(capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing capability: {capability.value}",
            )
        return session

    return _require


async def get_current_admin_user(
    session: Annotated[Session, Depends(get_current_session)],
) -> User:
    """
    Dependency to get the current authenticated admin user.
    """
    if not session.can(Capability.ADMIN_DASHBOARD):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return session.user


async def get_current_super_admin_user(
    session: Annotated[Session, Depends(get_current_session)],
) -> User:
    """Admin who may change roles and plans of other users."""
    if not session.can(Capability.MANAGE_USERS):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin access required",
        )
    return session.user


def _extract_api_key(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token.startswith(API_KEY_PREFIX):
            return token
    return None


async def get_api_key_session(
    authorization: Annotated[str | None, Header()] = None,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    db: AsyncSession = Depends(get_db),
) -> Session:
    """
    Authenticate a public API call by key.

    Accepts ``Authorization: Bearer llm_sk_...`` or ``X-API-Key``. The key
    owner must still hold API access; a downgraded account's keys stop
    working without being revoked.
    """
    raw_key = _extract_api_key(authorization, x_api_key)
    if not raw_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    authenticated = await ApiKeyService(db).authenticate(raw_key)
    if authenticated is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    _, user = authenticated
    session = Session.for_user(user)
    if not session.can(Capability.API_ACCESS):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API access requires the Enterprise plan",
        )
    # Persist last_used_at even for read-only calls
    await db.commit()
    return session
