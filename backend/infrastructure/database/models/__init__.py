"""
SQLAlchemy database models.
"""

from .admin import AuditAction, AuditLog, AuditTargetType
from .analysis import Analysis, AnalysisCategory
from .api_key import ApiKey
from .base import Base, TimestampMixin
from .payment import PaymentLog
from .trial import TrialSignup
from .user import PAID_TIERS, SubscriptionTier, User, UserRole, UserStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserRole",
    "UserStatus",
    "SubscriptionTier",
    "PAID_TIERS",
    "Analysis",
    "AnalysisCategory",
    "ApiKey",
    "PaymentLog",
    "TrialSignup",
    "AuditLog",
    "AuditAction",
    "AuditTargetType",
]
