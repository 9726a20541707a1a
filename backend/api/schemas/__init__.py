"""
API request and response schemas.
"""

from .auth import (
    LoginRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserResponse,
    PasswordChangeRequest,
    RefreshTokenRequest,
)

__all__ = [
    "LoginRequest",
    "RegisterRequest",
    "RegisterResponse",
    "TokenResponse",
    "UserResponse",
    "PasswordChangeRequest",
    "RefreshTokenRequest",
]
