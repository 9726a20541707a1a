"""
Authentication API routes.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.middleware.rate_limit import get_client_ip, get_rate_limit, limiter
from api.schemas.auth import (
    DeleteAccountRequest,
    LoginRequest,
    PasswordChangeRequest,
    RefreshTokenRequest,
    RegisterRequest,
    RegisterResponse,
    SessionResponse,
    TokenResponse,
    TrialEligibilityRequest,
    TrialEligibilityResponse,
    UserResponse,
    UserUpdateRequest,
)
from core.capabilities import Session
from core.security.password import password_hasher
from core.security.tokens import TokenService
from core.trial_eligibility import TrialRequest
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.admin import AuditAction, AuditTargetType
from infrastructure.database.models.api_key import ApiKey
from infrastructure.database.models.user import SubscriptionTier, User, UserStatus
from services.analysis_service import AnalysisService
from services.audit import record_audit
from services.kv_store import KeyValueStore, get_kv_store
from services.trial_service import TrialService, trial_end

logger = logging.getLogger(__name__)

_DELETE_CONFIRMATION = "DELETE MY ACCOUNT"


def _get_cookie_kwargs(settings_obj) -> dict:
    """Cookie flags for the current deployment.

    Cross-site (SameSite=None; Secure) whenever the frontend is not served
    from localhost, Lax otherwise.
    """
    is_production = getattr(settings_obj, "environment", "development") == "production"
    frontend_url = getattr(settings_obj, "frontend_url", "http://localhost:5173")
    is_deployed = not any(h in frontend_url for h in ("localhost", "127.0.0.1", "0.0.0.0"))
    use_cross_site = is_production or is_deployed
    kwargs = dict(
        httponly=True,
        secure=use_cross_site,
        samesite="none" if use_cross_site else "lax",
        path="/",
    )
    cookie_domain = getattr(settings_obj, "cookie_domain", None)
    if cookie_domain:
        kwargs["domain"] = cookie_domain
    return kwargs


def _set_auth_cookies(response: JSONResponse, access_token: str, refresh_token: str, settings_obj) -> None:
    """Set HttpOnly auth cookies on response."""
    kwargs = _get_cookie_kwargs(settings_obj)
    access_max_age = settings_obj.jwt_access_token_expire_minutes * 60
    refresh_max_age = settings_obj.jwt_refresh_token_expire_days * 86400
    response.set_cookie("access_token", access_token, max_age=access_max_age, **kwargs)
    response.set_cookie("refresh_token", refresh_token, max_age=refresh_max_age, **kwargs)


def _clear_auth_cookies(response: JSONResponse, settings_obj) -> None:
    """Clear auth cookies on logout."""
    kwargs = _get_cookie_kwargs(settings_obj)
    response.delete_cookie("access_token", **kwargs)
    response.delete_cookie("refresh_token", **kwargs)


def _token_response(user: User) -> JSONResponse:
    """Issue a token pair in the body and as HttpOnly cookies."""
    access_token, refresh_token = token_service.create_token_pair(
        user_id=user.id,
        email=user.email,
        role=user.role,
    )
    response = JSONResponse(
        content=TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=token_service.access_token_ttl_seconds,
        ).model_dump()
    )
    _set_auth_cookies(response, access_token, refresh_token, settings)
    return response


def _issued_before_password_change(issued_at: Optional[datetime], user: User) -> bool:
    if not issued_at or not user.password_changed_at:
        return False
    changed = user.password_changed_at
    if changed.tzinfo is None:
        changed = changed.replace(tzinfo=timezone.utc)
    # JWT iat has whole-second precision
    return issued_at < changed.replace(microsecond=0)


router = APIRouter(prefix="/auth", tags=["Authentication"])

token_service = TokenService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
    access_token_expire_minutes=settings.jwt_access_token_expire_minutes,
    refresh_token_expire_days=settings.jwt_refresh_token_expire_days,
)


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user.

    Checks the Authorization header first (Bearer token) and falls back to
    the HttpOnly access_token cookie used by browser clients.
    """
    token = None
    if authorization and authorization.startswith("Bearer "):
        parts = authorization.split(" ", 1)
        token = parts[1] if len(parts) > 1 and parts[1] else None

    if not token:
        token = request.cookies.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = token_service.verify_access_token(token)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == payload.sub))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )

    if _issued_before_password_change(payload.iat, user):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalidated due to security event",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


@router.post("/trial/eligibility", response_model=TrialEligibilityResponse)
@limiter.limit(get_rate_limit("trial_check"))
async def check_trial_eligibility(
    request: Request,
    body: TrialEligibilityRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Check whether a free trial would be granted, without starting one.
    """
    decision = await TrialService(db).check_eligibility(
        TrialRequest(
            email=body.email,
            ip_address=get_client_ip(request),
            device_fingerprint=body.device_fingerprint,
        )
    )
    return TrialEligibilityResponse.model_validate(decision)


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("register"))
async def register(
    request: Request,
    register_data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new user account.

    With ``start_trial`` the signup is checked for trial abuse; an allowed
    signup starts a trial, a blocked one still gets a free account.
    """
    email = register_data.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this email already exists",
        )

    user = User(
        email=email,
        name=register_data.name,
        company=register_data.company,
        password_hash=password_hasher.hash(register_data.password),
        status=UserStatus.ACTIVE.value,
    )
    db.add(user)
    await db.flush()

    trial_response = None
    if register_data.start_trial:
        trial_service = TrialService(db)
        trial_request = TrialRequest(
            email=email,
            ip_address=get_client_ip(request),
            device_fingerprint=register_data.device_fingerprint,
        )
        decision = await trial_service.check_eligibility(trial_request)
        if decision.allowed:
            user.subscription_tier = SubscriptionTier.TRIAL.value
            user.subscription_status = "trialing"
            user.trial_ends_at = trial_end()
            await trial_service.record_signup(trial_request, user.id, decision.risk_score)
            logger.info("Trial started for user %s", user.id)
        trial_response = TrialEligibilityResponse.model_validate(decision)

    await db.commit()
    await db.refresh(user)

    return RegisterResponse(user=UserResponse.model_validate(user), trial=trial_response)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(get_rate_limit("login"))
async def login(
    request: Request,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate user and return access tokens.
    """
    result = await db.execute(select(User).where(User.email == login_data.email.lower()))
    user = result.scalar_one_or_none()

    password_ok = password_hasher.verify(
        login_data.password,
        user.password_hash if user else None,
    )
    if not user or not password_ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.status == UserStatus.SUSPENDED.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account has been suspended",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    upgraded = password_hasher.upgraded_hash(login_data.password, user.password_hash)
    if upgraded:
        user.password_hash = upgraded

    user.last_login = datetime.now(timezone.utc)
    user.login_count += 1
    await db.commit()

    return _token_response(user)


@router.post("/refresh", response_model=TokenResponse)
@limiter.limit(get_rate_limit("refresh"))
async def refresh_token(
    request: Request,
    body: Optional[RefreshTokenRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Refresh access token using refresh token.

    Accepts the refresh token from the HttpOnly cookie first, then from the
    request body.
    """
    refresh_tok = request.cookies.get("refresh_token")
    if not refresh_tok:
        refresh_tok = body.refresh_token if body and body.refresh_token else None

    if not refresh_tok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token required",
        )

    payload = token_service.verify_refresh_token(refresh_tok)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    result = await db.execute(select(User).where(User.id == payload.sub))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    if _issued_before_password_change(payload.iat, user):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalidated due to password change. Please log in again.",
        )

    return _token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Get current authenticated user profile.
    """
    return current_user


@router.get("/session", response_model=SessionResponse)
async def get_session(
    current_user: Annotated[User, Depends(get_current_user)],
) -> SessionResponse:
    """Current user with the capabilities the frontend should unlock."""
    session = Session.for_user(current_user)
    return SessionResponse(
        user=UserResponse.model_validate(current_user),
        capabilities=sorted(c.value for c in session.capabilities),
        is_admin=session.is_admin,
    )


@router.put("/me", response_model=UserResponse)
async def update_me(
    body: UserUpdateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> User:
    """Update profile fields."""
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(current_user, field, value)
    await db.commit()
    await db.refresh(current_user)
    return current_user


@router.post("/password/change", status_code=status.HTTP_200_OK)
@limiter.limit(get_rate_limit("password_change"))
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Change password for authenticated user.

    Tokens issued before the change stop working.
    """
    if not password_hasher.verify(body.current_password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    current_user.password_hash = password_hasher.hash(body.new_password)
    current_user.password_changed_at = datetime.now(timezone.utc)
    await db.commit()

    return {"message": "Password has been changed successfully"}


@router.post("/logout", status_code=status.HTTP_200_OK)
@limiter.limit(get_rate_limit("logout"))
async def logout(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
) -> JSONResponse:
    """
    Logout current user.

    JWTs are stateless; the client discards its tokens and the HttpOnly
    cookies are cleared here.
    """
    response = JSONResponse(content={"message": "Logged out successfully"})
    _clear_auth_cookies(response, settings)
    return response


@router.delete("/account", status_code=status.HTTP_200_OK)
async def delete_account(
    request: Request,
    body: DeleteAccountRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    kv_store: KeyValueStore = Depends(get_kv_store),
):
    """
    Permanently delete the current user's account and all associated data.

    The body must contain {"confirmation": "DELETE MY ACCOUNT"}. Analyses and
    API keys are removed; payment and audit records are kept with the user
    reference cleared.
    """
    if body.confirmation != _DELETE_CONFIRMATION:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Confirmation text must be exactly '{_DELETE_CONFIRMATION}'",
        )

    user_id = current_user.id
    logger.info("Account deletion initiated for user_id=%s", user_id)

    try:
        deleted = await AnalysisService(db, kv_store).delete_all_for_user(user_id)
        await db.execute(delete(ApiKey).where(ApiKey.user_id == user_id))
        await record_audit(
            db,
            actor_user_id=None,
            action=AuditAction.ACCOUNT_DELETED,
            target_type=AuditTargetType.USER,
            target_id=user_id,
            metadata={"analyses_deleted": deleted},
            ip_address=get_client_ip(request),
        )
        await db.delete(current_user)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error("Account deletion failed for user_id=%s", user_id, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Account deletion failed. Please contact support.",
        )

    logger.info("Account deleted successfully for user_id=%s", user_id)

    response = JSONResponse(content={"message": "Account deleted successfully"})
    _clear_auth_cookies(response, settings)
    return response
