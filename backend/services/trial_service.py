"""
Trial signup service.

Gathers prior-signup signals from the database and feeds them to the
eligibility rules. Signal gathering failures leave the decision to the
fail-open branch of the rules rather than blocking the signup.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.trial_eligibility import (
    TRIAL_COOLDOWN_DAYS,
    EligibilityDecision,
    PriorSignup,
    TrialRequest,
    evaluate_trial_eligibility,
    normalize_email,
)
from infrastructure.database.models.trial import TrialSignup

logger = logging.getLogger(__name__)

TRIAL_LENGTH_DAYS = 7


class TrialService:
    """Trial eligibility checks and signup recording."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def gather_signals(self, request: TrialRequest) -> Optional[list[PriorSignup]]:
        """Recent signups plus any sharing the IP or device, or None on error."""
        since = datetime.now(timezone.utc) - timedelta(days=TRIAL_COOLDOWN_DAYS)

        # Email similarity only looks inside the cooldown; IP and device counts are lifetime
        conditions = [TrialSignup.created_at >= since]
        if request.ip_address:
            conditions.append(TrialSignup.ip_address == request.ip_address)
        if request.device_fingerprint:
            conditions.append(TrialSignup.device_fingerprint == request.device_fingerprint)

        try:
            result = await self.db.execute(
                select(TrialSignup).where(or_(*conditions))
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.warning("Trial signal lookup failed, allowing signup: %s", e)
            return None

        return [
            PriorSignup(
                normalized_email=row.normalized_email,
                ip_address=row.ip_address,
                device_fingerprint=row.device_fingerprint,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def check_eligibility(self, request: TrialRequest) -> EligibilityDecision:
        signals = await self.gather_signals(request)
        decision = evaluate_trial_eligibility(request, signals)
        if decision.signals_unavailable:
            logger.warning("Trial eligibility decided without signals for a new signup")
        elif not decision.allowed:
            logger.info(
                "Trial blocked (risk %d): %s",
                decision.risk_score,
                "; ".join(decision.reasons),
            )
        return decision

    async def record_signup(
        self,
        request: TrialRequest,
        user_id: Optional[str],
        risk_score: int = 0,
    ) -> TrialSignup:
        signup = TrialSignup(
            user_id=user_id,
            email=request.email.strip().lower(),
            normalized_email=normalize_email(request.email),
            ip_address=request.ip_address,
            device_fingerprint=request.device_fingerprint,
            risk_score=risk_score,
        )
        self.db.add(signup)
        await self.db.flush()
        return signup


def trial_end(now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(days=TRIAL_LENGTH_DAYS)
