"""
Rate limiting with slowapi.

Limits are keyed by the real client IP (proxy aware) and stored in Redis
when REDIS_URL is set, otherwise in process memory.

Rate Limits:
- Login: 5 per minute
- Registration: 3 per minute
- Token refresh and logout: 20 per minute
- Password change: 5 per minute
- Trial eligibility check: 10 per minute
- New analysis: 10 per minute
- Public API and API key creation: 10 per minute
- Checkout / cancel: 5 per minute
- Payment webhooks: 100 per minute
- Default: 100 per minute
"""

import ipaddress
import logging
import re

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")


def _is_valid_ip(value: str) -> bool:
    if not _IP_LIKE.match(value):
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def _is_private_ip(value: str) -> bool:
    """Private, loopback and link-local addresses are never trusted from headers."""
    try:
        addr = ipaddress.ip_address(value)
        return addr.is_private or addr.is_loopback or addr.is_link_local
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """Client IP from X-Forwarded-For / X-Real-IP, else the socket peer.

    Header values must parse as public IP addresses; anything else falls
    back to the connection address so spoofed headers cannot pick a bucket.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        candidate = real_ip.strip()
        if _is_valid_ip(candidate) and not _is_private_ip(candidate):
            return candidate
    return get_remote_address(request)


RATE_LIMITS = {
    "login": "5/minute",
    "register": "3/minute",
    "refresh": "20/minute",
    "logout": "20/minute",
    "password_change": "5/minute",
    "trial_check": "10/minute",
    "analysis": "10/minute",
    "public_api": "10/minute",
    "api_key_create": "10/minute",
    "checkout": "5/minute",
    "webhook": "100/minute",
    "default": "100/minute",
}

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url:
    logger.warning(
        "Rate limiter using in-memory storage; limits are per process"
    )
    if settings.environment == "production":
        logger.critical(
            "REDIS_URL is not set in production: rate limits are not shared between workers"
        )

limiter = Limiter(
    key_func=get_client_ip,
    storage_uri=_storage_uri,
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """
    Rate limit string for an endpoint type.

    Example:
        >>> get_rate_limit("login")
        "5/minute"
        >>> get_rate_limit("unknown")
        "100/minute"
    """
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
