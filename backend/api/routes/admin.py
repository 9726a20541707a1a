"""
Admin API routes: user management, platform stats and audit logs.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import and_, asc, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_admin_user
from api.middleware.rate_limit import get_client_ip
from api.schemas.admin import (
    AdminUserUpdateRequest,
    AuditLogListResponse,
    AuditLogResponse,
    PlatformStatsResponse,
    UserActionResponse,
    UserDetailResponse,
    UserListItemResponse,
    UserListResponse,
)
from api.utils import escape_like, page_count
from core.capabilities import Capability, Session
from infrastructure.database.connection import get_db
from infrastructure.database.models.admin import AuditAction, AuditLog, AuditTargetType
from infrastructure.database.models.analysis import Analysis
from infrastructure.database.models.api_key import ApiKey
from infrastructure.database.models.payment import PaymentLog
from infrastructure.database.models.user import PAID_TIERS, SubscriptionTier, User, UserRole, UserStatus
from services.analysis_service import AnalysisService, month_start
from services.audit import record_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


async def build_user_detail_response(db: AsyncSession, user: User) -> UserDetailResponse:
    """Detailed user response including this month's usage."""
    analyses_this_month = await AnalysisService(db).count_monthly_analyses(user.id)
    return UserDetailResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        company=user.company,
        role=user.role,
        status=user.status,
        subscription_tier=user.subscription_tier,
        subscription_status=user.subscription_status,
        subscription_expires=user.subscription_expires,
        trial_ends_at=user.trial_ends_at,
        payment_verified=user.payment_verified,
        stripe_customer_id=user.stripe_customer_id,
        stripe_subscription_id=user.stripe_subscription_id,
        login_count=user.login_count,
        suspended_reason=user.suspended_reason,
        analyses_this_month=analyses_this_month,
        capabilities=sorted(c.value for c in Session.for_user(user).capabilities),
        last_login=user.last_login,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


# ============================================================================
# User Management Endpoints
# ============================================================================


@router.get("/users", response_model=UserListResponse)
async def list_users(
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(get_current_admin_user),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    role: Optional[str] = Query(None, pattern="^(user|admin|super_admin)$"),
    subscription_tier: Optional[str] = Query(
        None, pattern="^(free|trial|starter|professional|enterprise)$"
    ),
    status: Optional[str] = Query(None, pattern="^(active|suspended|deleted)$"),
    sort_by: str = Query("created_at", pattern="^(created_at|email|subscription_tier|last_login)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
) -> UserListResponse:
    """
    List all users with pagination and filtering.

    Admin access required.
    """
    filters = []

    if search:
        search_pattern = f"%{escape_like(search)}%"
        filters.append(
            or_(
                User.email.ilike(search_pattern),
                User.name.ilike(search_pattern),
                User.company.ilike(search_pattern),
            )
        )

    if role:
        filters.append(User.role == role)

    if subscription_tier:
        filters.append(User.subscription_tier == subscription_tier)

    if status:
        filters.append(User.status == status)

    query = select(User)
    count_query = select(func.count()).select_from(User)
    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total = (await db.execute(count_query)).scalar() or 0

    sort_column = getattr(User, sort_by)
    query = query.order_by(desc(sort_column) if sort_order == "desc" else asc(sort_column))
    query = query.limit(page_size).offset((page - 1) * page_size)

    users = (await db.execute(query)).scalars().all()

    return UserListResponse(
        users=[UserListItemResponse.model_validate(user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=page_count(total, page_size),
    )


@router.get("/users/{user_id}", response_model=UserDetailResponse)
async def get_user_detail(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(get_current_admin_user),
) -> UserDetailResponse:
    """
    Get detailed information about a specific user.

    Admin access required.
    """
    user = await _get_user_or_404(db, user_id)
    return await build_user_detail_response(db, user)


@router.put("/users/{user_id}", response_model=UserActionResponse)
async def update_user(
    user_id: str,
    body: AdminUserUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(get_current_admin_user),
) -> UserActionResponse:
    """
    Update a user's role, plan or suspension.

    Admin access required; role changes additionally need user management
    rights. Admins cannot change their own role or suspend themselves.
    """
    user = await _get_user_or_404(db, user_id)
    admin_session = Session.for_user(admin_user)

    if body.role is not None and body.role != user.role:
        if not admin_session.can(Capability.MANAGE_USERS):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only super admins can change roles",
            )
        if user.id == admin_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Cannot change your own role",
            )

    if body.is_suspended and user.id == admin_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot suspend your own account",
        )

    old_values: dict = {}
    new_values: dict = {}

    def _change(field: str, value) -> None:
        current = getattr(user, field)
        if value is not None and value != current:
            old_values[field] = current
            new_values[field] = value
            setattr(user, field, value)

    _change("role", body.role)
    _change("subscription_tier", body.subscription_tier)
    _change("subscription_status", body.subscription_status)

    if body.is_suspended is not None:
        target_status = UserStatus.SUSPENDED.value if body.is_suspended else UserStatus.ACTIVE.value
        if target_status != user.status:
            old_values["status"] = user.status
            new_values["status"] = target_status
            user.status = target_status
            user.suspended_reason = body.suspended_reason if body.is_suspended else None

    if not new_values:
        return UserActionResponse(
            success=True,
            message="No changes were made",
            user=await build_user_detail_response(db, user),
        )

    if "role" in new_values:
        action, target_type = AuditAction.ROLE_CHANGED, AuditTargetType.USER
    elif "status" in new_values:
        action = AuditAction.USER_SUSPENDED if body.is_suspended else AuditAction.USER_UNSUSPENDED
        target_type = AuditTargetType.USER
    elif "subscription_tier" in new_values or "subscription_status" in new_values:
        action, target_type = AuditAction.SUBSCRIPTION_UPDATED, AuditTargetType.SUBSCRIPTION
    else:
        action, target_type = AuditAction.USER_UPDATED, AuditTargetType.USER

    await record_audit(
        db,
        actor_user_id=admin_user.id,
        action=action,
        target_type=target_type,
        target_id=user.id,
        description=f"Updated user {user.email}",
        metadata={
            "old_value": old_values,
            "new_value": new_values,
            "reason": body.suspended_reason,
        },
        ip_address=get_client_ip(request),
    )
    await db.commit()
    await db.refresh(user)

    logger.info("Admin %s updated user %s: %s", admin_user.id, user.id, ", ".join(new_values))

    return UserActionResponse(
        success=True,
        message="User updated successfully",
        user=await build_user_detail_response(db, user),
    )


# ============================================================================
# Platform Stats
# ============================================================================


@router.get("/stats", response_model=PlatformStatsResponse)
async def get_platform_stats(
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(get_current_admin_user),
) -> PlatformStatsResponse:
    """
    Headline platform statistics.

    Revenue counts paid checkout sessions only, so a payment is never
    counted twice through its payment intent.
    """
    start = month_start()

    total_users = (await db.execute(select(func.count(User.id)))).scalar() or 0
    new_users = (
        await db.execute(select(func.count(User.id)).where(User.created_at >= start))
    ).scalar() or 0

    tier_rows = await db.execute(
        select(User.subscription_tier, func.count(User.id)).group_by(User.subscription_tier)
    )
    users_by_tier = {tier.value: 0 for tier in SubscriptionTier}
    users_by_tier.update({tier: count for tier, count in tier_rows.all()})

    active_paid = (
        await db.execute(
            select(func.count(User.id)).where(
                User.subscription_tier.in_(PAID_TIERS),
                User.subscription_status.in_(("active", "trialing")),
                User.role == UserRole.USER.value,
            )
        )
    ).scalar() or 0

    total_analyses = (await db.execute(select(func.count(Analysis.id)))).scalar() or 0
    analyses_this_month = (
        await db.execute(select(func.count(Analysis.id)).where(Analysis.created_at >= start))
    ).scalar() or 0
    simulated_this_month = (
        await db.execute(
            select(func.count(Analysis.id)).where(
                Analysis.created_at >= start,
                Analysis.is_simulated.is_(True),
            )
        )
    ).scalar() or 0

    paid = and_(
        PaymentLog.event_type == "checkout.session.completed",
        PaymentLog.status == "paid",
    )
    revenue = (
        await db.execute(select(func.coalesce(func.sum(PaymentLog.amount_cents), 0)).where(paid))
    ).scalar() or 0
    revenue_this_month = (
        await db.execute(
            select(func.coalesce(func.sum(PaymentLog.amount_cents), 0)).where(
                paid, PaymentLog.created_at >= start
            )
        )
    ).scalar() or 0

    active_api_keys = (
        await db.execute(select(func.count(ApiKey.id)).where(ApiKey.revoked_at.is_(None)))
    ).scalar() or 0

    return PlatformStatsResponse(
        total_users=total_users,
        new_users_this_month=new_users,
        users_by_tier=users_by_tier,
        active_paid_subscriptions=active_paid,
        total_analyses=total_analyses,
        analyses_this_month=analyses_this_month,
        simulated_analyses_this_month=simulated_this_month,
        revenue_cents=int(revenue),
        revenue_this_month_cents=int(revenue_this_month),
        active_api_keys=active_api_keys,
    )


# ============================================================================
# Audit Logs
# ============================================================================


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: AsyncSession = Depends(get_db),
    admin_user: User = Depends(get_current_admin_user),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    actor_user_id: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
) -> AuditLogListResponse:
    """
    List audit logs with filtering and pagination.

    Admin access required.
    """
    filters = []

    if actor_user_id:
        filters.append(AuditLog.actor_user_id == actor_user_id)

    if target_type:
        filters.append(AuditLog.target_type == target_type)

    if action:
        filters.append(AuditLog.action == action)

    if target_id:
        filters.append(AuditLog.target_id == target_id)

    if date_from:
        filters.append(AuditLog.created_at >= date_from)

    if date_to:
        filters.append(AuditLog.created_at <= date_to)

    query = select(AuditLog, User.email).outerjoin(User, User.id == AuditLog.actor_user_id)
    count_query = select(func.count()).select_from(AuditLog)
    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total = (await db.execute(count_query)).scalar() or 0

    order = desc(AuditLog.created_at) if sort_order == "desc" else asc(AuditLog.created_at)
    query = query.order_by(order).limit(page_size).offset((page - 1) * page_size)
    rows = (await db.execute(query)).all()

    return AuditLogListResponse(
        logs=[
            AuditLogResponse(
                id=log.id,
                actor_user_id=log.actor_user_id,
                actor_email=email,
                action=log.action,
                target_type=log.target_type,
                target_id=log.target_id,
                details=log.details,
                ip_address=log.ip_address,
                created_at=log.created_at,
            )
            for log, email in rows
        ],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=page_count(total, page_size),
    )
