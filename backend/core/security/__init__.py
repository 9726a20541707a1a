"""
Security utilities for authentication and authorization.
"""

from .api_keys import GeneratedApiKey, generate_api_key, hash_api_key, looks_like_api_key
from .password import PasswordHasher, password_hasher
from .tokens import TokenPayload, TokenService

__all__ = [
    "GeneratedApiKey",
    "PasswordHasher",
    "TokenService",
    "TokenPayload",
    "generate_api_key",
    "hash_api_key",
    "looks_like_api_key",
    "password_hasher",
]
