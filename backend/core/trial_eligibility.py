"""
Free-trial eligibility rules.

Evaluates a signup against prior trial signals that the caller has already
gathered. The policy fails open: when signals are missing the signup is
allowed and the decision is flagged as made without signals.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

TRIAL_COOLDOWN_DAYS = 90
MAX_TRIALS_PER_IP = 3
EMAIL_SIMILARITY_THRESHOLD = 0.8
DEVICE_REUSE_THRESHOLD = 2
VELOCITY_WINDOW = timedelta(hours=24)
VELOCITY_THRESHOLD = 3

BLOCK_THRESHOLD = 50
PAYMENT_METHOD_THRESHOLD = 25

DISPOSABLE_EMAIL_DOMAINS = frozenset(
    {
        "10minutemail.com",
        "tempmail.org",
        "guerrillamail.com",
        "mailinator.com",
        "throwaway.email",
        "temp-mail.org",
    }
)

ALTERNATIVE_OPTIONS = (
    "Subscribe to a paid plan to start analyzing immediately",
    "Contact support if you believe this is a mistake",
    "Use the free plan with simulated demo results",
)


@dataclass(frozen=True)
class PriorSignup:
    """A previously recorded trial start."""

    normalized_email: str
    ip_address: Optional[str]
    device_fingerprint: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class TrialRequest:
    """The signup being evaluated."""

    email: str
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None


@dataclass
class EligibilityDecision:
    """Outcome of an eligibility check."""

    allowed: bool
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)
    requires_payment_method: bool = False
    alternative_options: list[str] = field(default_factory=list)
    signals_unavailable: bool = False


def normalize_email(email: str) -> str:
    """Canonical form used to spot re-registrations of the same mailbox.

    Lowercases, drops any ``+tag`` suffix and removes dots from the local part.
    """
    email = email.strip().lower()
    local, sep, domain = email.partition("@")
    if not sep:
        return email
    local = local.split("+", 1)[0].replace(".", "")
    return f"{local}@{domain}"


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def email_similarity(a: str, b: str) -> float:
    """1.0 for identical strings, 0.0 for completely different ones."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def is_disposable_email(email: str) -> bool:
    domain = email.rsplit("@", 1)[-1].strip().lower()
    return domain in DISPOSABLE_EMAIL_DOMAINS


def evaluate_trial_eligibility(
    request: TrialRequest,
    prior_signups: Optional[Sequence[PriorSignup]],
    now: Optional[datetime] = None,
) -> EligibilityDecision:
    """Score a trial signup; ``prior_signups=None`` means signals are unavailable."""
    if prior_signups is None:
        return EligibilityDecision(allowed=True, signals_unavailable=True)

    now = now or datetime.now(timezone.utc)
    normalized = normalize_email(request.email)
    cooldown_start = now - timedelta(days=TRIAL_COOLDOWN_DAYS)
    risk = 0
    reasons: list[str] = []

    # Similar email within the cooldown window
    for prior in prior_signups:
        if _as_aware(prior.created_at) < cooldown_start:
            continue
        if email_similarity(normalized, prior.normalized_email) >= EMAIL_SIMILARITY_THRESHOLD:
            risk += 40
            reasons.append("Similar email address used for a recent trial")
            break

    # Device fingerprint reuse
    if request.device_fingerprint:
        device_count = sum(
            1 for p in prior_signups if p.device_fingerprint == request.device_fingerprint
        )
        if device_count >= DEVICE_REUSE_THRESHOLD:
            risk += 30
            reasons.append("Device has already been used for multiple trials")

    # IP reuse
    if request.ip_address:
        ip_count = sum(1 for p in prior_signups if p.ip_address == request.ip_address)
        if ip_count >= MAX_TRIALS_PER_IP:
            risk += 25
            reasons.append("Too many trials started from this network")

    if is_disposable_email(request.email):
        risk += 35
        reasons.append("Disposable email addresses are not eligible for trials")

    # Burst of signups from the same IP or device
    velocity_start = now - VELOCITY_WINDOW
    recent = [
        p
        for p in prior_signups
        if _as_aware(p.created_at) >= velocity_start
        and (
            (request.ip_address and p.ip_address == request.ip_address)
            or (request.device_fingerprint and p.device_fingerprint == request.device_fingerprint)
        )
    ]
    if len(recent) >= VELOCITY_THRESHOLD:
        risk += 20
        reasons.append("Unusual number of trial signups in the last 24 hours")

    allowed = risk < BLOCK_THRESHOLD
    return EligibilityDecision(
        allowed=allowed,
        risk_score=risk,
        reasons=reasons,
        requires_payment_method=risk > PAYMENT_METHOD_THRESHOLD,
        alternative_options=[] if allowed else list(ALTERNATIVE_OPTIONS),
    )


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
