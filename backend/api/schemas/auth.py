"""
Authentication request and response schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from core.security.password import check_password_strength


class LoginRequest(BaseModel):
    """Login request schema."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """Registration request schema."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)
    start_trial: bool = False
    device_fingerprint: Optional[str] = Field(None, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        """Validate password meets minimum requirements."""
        return check_password_strength(v)


class TrialEligibilityRequest(BaseModel):
    """Pre-signup trial check."""

    email: EmailStr
    device_fingerprint: Optional[str] = Field(None, max_length=255)


class TrialEligibilityResponse(BaseModel):
    """Outcome of a trial eligibility check."""

    allowed: bool
    risk_score: int
    reasons: list[str] = Field(default_factory=list)
    requires_payment_method: bool = False
    alternative_options: list[str] = Field(default_factory=list)
    signals_unavailable: bool = False

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    """Token response schema."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until access token expires


class RefreshTokenRequest(BaseModel):
    """Refresh token request schema."""

    refresh_token: Optional[str] = None


class UserResponse(BaseModel):
    """User response schema."""

    id: str
    email: str
    name: str
    company: Optional[str] = None
    role: str
    status: str
    subscription_tier: str
    subscription_status: str = "active"
    subscription_expires: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    created_at: datetime
    last_login: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    """Current user plus the capabilities resolved for this request."""

    user: UserResponse
    capabilities: list[str]
    is_admin: bool


class RegisterResponse(BaseModel):
    """New account and, when a trial was requested, the eligibility outcome."""

    user: UserResponse
    trial: Optional[TrialEligibilityResponse] = None


class UserUpdateRequest(BaseModel):
    """User update request schema."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    company: Optional[str] = Field(None, max_length=255)


class PasswordChangeRequest(BaseModel):
    """Password change request schema."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)

    @field_validator("new_password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return check_password_strength(v)


class DeleteAccountRequest(BaseModel):
    """Account deletion must be confirmed with a fixed phrase."""

    confirmation: str
