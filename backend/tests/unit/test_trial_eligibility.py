"""
Unit tests for free-trial abuse scoring.

Tests cover:
- Email normalization and similarity
- Each risk signal and the block threshold
- Fail-open behaviour when signals are unavailable
- Signal gathering and signup recording against the database
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.trial_eligibility import (
    ALTERNATIVE_OPTIONS,
    PriorSignup,
    TrialRequest,
    email_similarity,
    evaluate_trial_eligibility,
    is_disposable_email,
    levenshtein_distance,
    normalize_email,
)
from services.trial_service import TRIAL_LENGTH_DAYS, TrialService, trial_end

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _prior(email="someone@example.com", ip=None, device=None, days_ago=1):
    return PriorSignup(
        normalized_email=normalize_email(email),
        ip_address=ip,
        device_fingerprint=device,
        created_at=NOW - timedelta(days=days_ago),
    )


class TestEmailHelpers:
    @pytest.mark.parametrize(
        "email,expected",
        [
            ("John.Doe+trial@Gmail.com", "johndoe@gmail.com"),
            ("  a.b.c@example.com ", "abc@example.com"),
            ("plain@example.com", "plain@example.com"),
            ("not-an-email", "not-an-email"),
        ],
    )
    def test_normalize_email(self, email, expected):
        assert normalize_email(email) == expected

    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_similarity(self):
        assert email_similarity("abc", "abc") == 1.0
        assert email_similarity("", "") == 1.0
        assert email_similarity("abcd", "wxyz") == 0.0

    def test_disposable(self):
        assert is_disposable_email("x@mailinator.com")
        assert is_disposable_email("x@Tempmail.org")
        assert not is_disposable_email("x@example.com")


class TestEvaluate:
    def test_no_history_is_allowed(self):
        decision = evaluate_trial_eligibility(TrialRequest(email="new@example.com"), [], now=NOW)
        assert decision.allowed is True
        assert decision.risk_score == 0
        assert decision.reasons == []
        assert decision.alternative_options == []
        assert decision.signals_unavailable is False

    def test_missing_signals_fail_open(self):
        decision = evaluate_trial_eligibility(TrialRequest(email="x@mailinator.com"), None, now=NOW)
        assert decision.allowed is True
        assert decision.signals_unavailable is True

    def test_similar_email_within_cooldown(self):
        decision = evaluate_trial_eligibility(
            TrialRequest(email="john.doe+2@example.com"),
            [_prior("johndoe@example.com", days_ago=10)],
            now=NOW,
        )
        assert decision.risk_score == 40
        assert decision.allowed is True
        assert decision.requires_payment_method is True

    def test_similar_email_outside_cooldown_ignored(self):
        decision = evaluate_trial_eligibility(
            TrialRequest(email="johndoe@example.com"),
            [_prior("johndoe@example.com", days_ago=120)],
            now=NOW,
        )
        assert decision.risk_score == 0

    def test_disposable_plus_similar_email_is_blocked(self):
        decision = evaluate_trial_eligibility(
            TrialRequest(email="johndoe@mailinator.com"),
            [_prior("johndoe@mailinator.com", days_ago=5)],
            now=NOW,
        )
        assert decision.risk_score == 75
        assert decision.allowed is False
        assert decision.alternative_options == list(ALTERNATIVE_OPTIONS)
        assert len(decision.reasons) == 2

    def test_device_reuse(self):
        priors = [_prior(f"user{i}@other.org", device="dev-1", days_ago=30) for i in range(2)]
        decision = evaluate_trial_eligibility(
            TrialRequest(email="fresh@example.com", device_fingerprint="dev-1"), priors, now=NOW
        )
        assert decision.risk_score == 30

    def test_ip_reuse_and_velocity(self):
        priors = [_prior(f"person{i}@other.org", ip="203.0.113.9", days_ago=0) for i in range(3)]
        decision = evaluate_trial_eligibility(
            TrialRequest(email="fresh@example.com", ip_address="203.0.113.9"), priors, now=NOW
        )
        # 25 for the IP count plus 20 for three signups inside 24 hours
        assert decision.risk_score == 45
        assert decision.allowed is True

    def test_naive_timestamps_are_treated_as_utc(self):
        prior = PriorSignup(
            normalized_email="johndoe@example.com",
            ip_address=None,
            device_fingerprint=None,
            created_at=(NOW - timedelta(days=1)).replace(tzinfo=None),
        )
        decision = evaluate_trial_eligibility(
            TrialRequest(email="johndoe@example.com"), [prior], now=NOW
        )
        assert decision.risk_score == 40


class TestTrialService:
    async def test_record_and_gather(self, db_session):
        service = TrialService(db_session)
        request = TrialRequest(email="Jane.Doe@Example.com", ip_address="203.0.113.5")
        signup = await service.record_signup(request, user_id=None, risk_score=5)
        await db_session.commit()

        assert signup.normalized_email == "janedoe@example.com"
        assert signup.email == "jane.doe@example.com"

        signals = await service.gather_signals(TrialRequest(email="other@example.com"))
        assert [s.normalized_email for s in signals] == ["janedoe@example.com"]

    async def test_repeat_signup_is_flagged(self, db_session):
        service = TrialService(db_session)
        await service.record_signup(TrialRequest(email="johndoe@mailinator.com"), user_id=None)
        await db_session.commit()

        decision = await service.check_eligibility(TrialRequest(email="john.doe@mailinator.com"))
        assert decision.allowed is False

    def test_trial_end(self):
        assert trial_end(NOW) == NOW + timedelta(days=TRIAL_LENGTH_DAYS)
