"""
Admin API schemas for platform statistics and user management.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# User Management
# ============================================================================


class UserListItemResponse(BaseModel):
    """User row in the admin list."""

    id: str
    email: str
    name: str
    company: Optional[str] = None
    role: str
    status: str
    subscription_tier: str
    subscription_status: str
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    """Paginated user list."""

    users: list[UserListItemResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class UserDetailResponse(UserListItemResponse):
    """Full user record for admins."""

    subscription_expires: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    payment_verified: bool = False
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    login_count: int = 0
    suspended_reason: Optional[str] = None
    analyses_this_month: int = 0
    capabilities: list[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class AdminUserUpdateRequest(BaseModel):
    """Fields an admin may change on a user."""

    role: Optional[str] = Field(None, pattern="^(user|admin|super_admin)$")
    subscription_tier: Optional[str] = Field(
        None, pattern="^(free|trial|starter|professional|enterprise)$"
    )
    subscription_status: Optional[str] = Field(
        None, pattern="^(active|trialing|cancelled|past_due|expired)$"
    )
    is_suspended: Optional[bool] = None
    suspended_reason: Optional[str] = Field(None, max_length=500)


class UserActionResponse(BaseModel):
    """Result of an admin action on a user."""

    success: bool
    message: str
    user: Optional[UserDetailResponse] = None


# ============================================================================
# Platform Stats
# ============================================================================


class PlatformStatsResponse(BaseModel):
    """Headline platform numbers for the admin dashboard."""

    total_users: int = Field(..., description="All user accounts")
    new_users_this_month: int = Field(..., description="Accounts created this month")
    users_by_tier: dict[str, int] = Field(..., description="User count per subscription tier")
    active_paid_subscriptions: int = Field(..., description="Paid tiers in good standing")
    total_analyses: int = Field(..., description="Analyses ever created")
    analyses_this_month: int = Field(..., description="Analyses created this month")
    simulated_analyses_this_month: int = Field(..., description="Of which simulated")
    revenue_cents: int = Field(..., description="Paid checkout revenue, all time")
    revenue_this_month_cents: int = Field(..., description="Paid checkout revenue this month")
    active_api_keys: int = Field(..., description="API keys not revoked")


# ============================================================================
# Audit Logs
# ============================================================================


class AuditLogResponse(BaseModel):
    """Audit log entry."""

    id: str
    actor_user_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    target_type: str
    target_id: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Paginated audit log entries, newest first."""

    logs: list[AuditLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
