"""
Trial signup records used as eligibility signals.
"""

from typing import Optional
from uuid import uuid4

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class TrialSignup(Base, TimestampMixin):
    """One free-trial start, keyed by normalized email, IP and device fingerprint."""

    __tablename__ = "trial_signups"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True, index=True)
    device_fingerprint: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_trial_signups_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TrialSignup(id={self.id}, email={self.normalized_email})>"
