"""
Capability resolution.

A user's role and subscription are turned into a fixed capability set once
per request. Everything downstream checks capabilities rather than roles,
tiers or email addresses.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.plans import get_plan_limit

ADMIN_ROLES = frozenset({"admin", "super_admin"})
GOOD_STANDING_STATUSES = frozenset({"active", "trialing"})


class Capability(str, Enum):
    """Things a session is allowed to do."""
    REAL_ANALYSIS = "real_analysis"
    BYPASS_USAGE_LIMITS = "bypass_usage_limits"
    API_ACCESS = "api_access"
    ADMIN_DASHBOARD = "admin_dashboard"
    MANAGE_USERS = "manage_users"


def resolve_capabilities(
    role: str,
    tier: str,
    subscription_status: Optional[str] = "active",
) -> frozenset[Capability]:
    """Capability set for a role and subscription."""
    if role in ADMIN_ROLES:
        capabilities = set(Capability)
        if role != "super_admin":
            capabilities.discard(Capability.MANAGE_USERS)
        return frozenset(capabilities)

    capabilities: set[Capability] = set()
    if subscription_status in GOOD_STANDING_STATUSES:
        if get_plan_limit(tier, "real_analysis"):
            capabilities.add(Capability.REAL_ANALYSIS)
        if get_plan_limit(tier, "api_access"):
            capabilities.add(Capability.API_ACCESS)
    return frozenset(capabilities)


@dataclass(frozen=True)
class Session:
    """Authenticated principal plus its resolved capabilities."""

    user: object
    capabilities: frozenset[Capability]

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def is_admin(self) -> bool:
        return Capability.ADMIN_DASHBOARD in self.capabilities

    @classmethod
    def for_user(cls, user) -> "Session":
        return cls(
            user=user,
            capabilities=resolve_capabilities(
                user.role, user.subscription_tier, user.subscription_status
            ),
        )
