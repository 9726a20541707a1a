"""
Audit log database models.
"""

from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class AuditAction(str, Enum):
    """Audit log action types."""

    # Account management
    USER_UPDATED = "user_updated"
    USER_SUSPENDED = "user_suspended"
    USER_UNSUSPENDED = "user_unsuspended"
    ACCOUNT_DELETED = "account_deleted"
    ROLE_CHANGED = "role_changed"
    SUBSCRIPTION_UPDATED = "subscription_updated"

    # Owner actions
    ANALYSIS_DELETED = "analysis_deleted"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"


class AuditTargetType(str, Enum):
    """Audit log target types."""

    USER = "user"
    SUBSCRIPTION = "subscription"
    ANALYSIS = "analysis"
    API_KEY = "api_key"


class AuditLog(Base, TimestampMixin):
    """Tracks administrative and security-relevant account actions."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Who performed the action
    actor_user_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Target resource
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """
    Structure:
    {
        "old_value": {...},
        "new_value": {...},
        "reason": "Policy violation"
    }
    """

    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    __table_args__ = (
        Index("ix_audit_actor_action", "actor_user_id", "action"),
        Index("ix_audit_target", "target_type", "target_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, actor={self.actor_user_id})>"
