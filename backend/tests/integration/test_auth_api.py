"""Integration tests for authentication endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models.admin import AuditLog
from infrastructure.database.models.analysis import Analysis
from infrastructure.database.models.trial import TrialSignup
from infrastructure.database.models.user import User

pytestmark = pytest.mark.asyncio

NEW_PASSWORD = "NewSecurePass456"


class TestRegistration:
    """Tests for user registration."""

    async def test_register_success(self, async_client: AsyncClient):
        """A plain signup gets a free account and no trial decision."""
        response = await async_client.post(
            "/api/v1/auth/register",
            json={
                "email": "NewUser@example.com",
                "password": "SecurePass123",
                "name": "New User",
                "company": "Acme",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == "newuser@example.com"
        assert data["user"]["subscription_tier"] == "free"
        assert data["user"]["role"] == "user"
        assert data["trial"] is None
        assert "password_hash" not in data["user"]

    async def test_register_duplicate_email(self, async_client: AsyncClient, test_user: User):
        """Test registration with existing email fails."""
        response = await async_client.post(
            "/api/v1/auth/register",
            json={"email": test_user.email, "password": "SecurePass123", "name": "Dup"},
        )
        assert response.status_code == 400
        assert "already exists" in response.json()["detail"].lower()

    @pytest.mark.parametrize("password", ["short1A", "alllowercase1", "NoDigitsHere"])
    async def test_register_weak_password(self, async_client: AsyncClient, password: str):
        """Passwords need length, mixed case and a digit."""
        response = await async_client.post(
            "/api/v1/auth/register",
            json={"email": "weak@example.com", "password": password, "name": "Weak"},
        )
        assert response.status_code == 422

    async def test_register_with_trial(
        self, async_client: AsyncClient, db_session: AsyncSession
    ):
        """A clean signup requesting a trial starts one and is recorded."""
        response = await async_client.post(
            "/api/v1/auth/register",
            json={
                "email": "trialist@example.com",
                "password": "SecurePass123",
                "name": "Trialist",
                "start_trial": True,
                "device_fingerprint": "fp-123",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["trial"]["allowed"] is True
        assert data["trial"]["risk_score"] == 0
        assert data["user"]["subscription_tier"] == "trial"
        assert data["user"]["subscription_status"] == "trialing"
        assert data["user"]["trial_ends_at"] is not None

        signups = (await db_session.execute(select(TrialSignup))).scalars().all()
        assert len(signups) == 1
        assert signups[0].device_fingerprint == "fp-123"
        assert signups[0].user_id == data["user"]["id"]

    async def test_blocked_trial_still_creates_free_account(self, async_client: AsyncClient):
        """A repeat trial from a disposable address is refused but the account exists."""
        first = await async_client.post(
            "/api/v1/auth/register",
            json={
                "email": "john.doe@mailinator.com",
                "password": "SecurePass123",
                "name": "John",
                "start_trial": True,
            },
        )
        assert first.json()["trial"]["allowed"] is True
        assert first.json()["trial"]["requires_payment_method"] is True

        second = await async_client.post(
            "/api/v1/auth/register",
            json={
                "email": "johndoe+again@mailinator.com",
                "password": "SecurePass123",
                "name": "John Again",
                "start_trial": True,
            },
        )

        assert second.status_code == 201
        data = second.json()
        assert data["trial"]["allowed"] is False
        assert data["trial"]["risk_score"] >= 50
        assert data["trial"]["alternative_options"]
        assert data["user"]["subscription_tier"] == "free"


class TestTrialEligibility:
    """Tests for the pre-signup trial check."""

    async def test_disposable_email_requires_payment_method(self, async_client: AsyncClient):
        """A disposable address alone is allowed but flagged."""
        response = await async_client.post(
            "/api/v1/auth/trial/eligibility",
            json={"email": "someone@mailinator.com"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["risk_score"] == 35
        assert data["requires_payment_method"] is True

    async def test_check_does_not_record_signup(
        self, async_client: AsyncClient, db_session: AsyncSession
    ):
        """Checking eligibility leaves no trace."""
        await async_client.post(
            "/api/v1/auth/trial/eligibility", json={"email": "curious@example.com"}
        )
        assert (await db_session.execute(select(TrialSignup))).scalars().all() == []


class TestLogin:
    """Tests for user login."""

    async def test_login_success(
        self, async_client: AsyncClient, test_user: User, db_session: AsyncSession, user_password
    ):
        """Valid credentials return a token pair and set cookies."""
        response = await async_client.post(
            "/api/v1/auth/login",
            json={"email": "TEST@example.com", "password": user_password},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] > 0
        assert "access_token" in response.cookies
        assert "refresh_token" in response.cookies

        await db_session.refresh(test_user)
        assert test_user.login_count == 1
        assert test_user.last_login is not None

    async def test_login_wrong_password(self, async_client: AsyncClient, test_user: User):
        """Test login with wrong password fails."""
        response = await async_client.post(
            "/api/v1/auth/login",
            json={"email": test_user.email, "password": "WrongPassword1"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    async def test_login_unknown_email(self, async_client: AsyncClient, user_password):
        """Unknown accounts get the same answer as a wrong password."""
        response = await async_client.post(
            "/api/v1/auth/login",
            json={"email": "nobody@example.com", "password": user_password},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    async def test_login_suspended(self, async_client: AsyncClient, make_user, user_password):
        """Suspended accounts cannot log in."""
        user = await make_user(email="suspended@example.com", status="suspended")
        response = await async_client.post(
            "/api/v1/auth/login",
            json={"email": user.email, "password": user_password},
        )
        assert response.status_code == 403


class TestTokens:
    """Tests for token refresh and invalidation."""

    async def test_refresh_with_body(
        self, async_client: AsyncClient, test_user: User, user_password
    ):
        """A refresh token in the body issues a new pair."""
        login = await async_client.post(
            "/api/v1/auth/login",
            json={"email": test_user.email, "password": user_password},
        )
        refresh_token = login.json()["refresh_token"]
        async_client.cookies.clear()

        response = await async_client.post(
            "/api/v1/auth/refresh", json={"refresh_token": refresh_token}
        )
        assert response.status_code == 200
        assert response.json()["access_token"]

    async def test_refresh_rejects_access_token(
        self, async_client: AsyncClient, test_user: User, headers_for
    ):
        """Access tokens cannot be used as refresh tokens."""
        access = headers_for(test_user)["Authorization"].split(" ", 1)[1]
        response = await async_client.post("/api/v1/auth/refresh", json={"refresh_token": access})
        assert response.status_code == 401

    async def test_refresh_requires_token(self, async_client: AsyncClient):
        """Test refresh without any token fails."""
        response = await async_client.post("/api/v1/auth/refresh")
        assert response.status_code == 401

    async def test_tokens_issued_before_password_change_are_rejected(
        self, async_client: AsyncClient, test_user: User, db_session: AsyncSession, headers_for
    ):
        """Changing the password invalidates older tokens."""
        headers = headers_for(test_user)
        test_user.password_changed_at = datetime.now(timezone.utc) + timedelta(minutes=1)
        await db_session.commit()

        response = await async_client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401


class TestCurrentUser:
    """Tests for profile and session endpoints."""

    async def test_me(self, async_client: AsyncClient, test_user: User, auth_headers: dict):
        """Test getting the current user profile."""
        response = await async_client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["email"] == test_user.email

    async def test_me_requires_auth(self, async_client: AsyncClient):
        """Test profile without a token fails."""
        response = await async_client.get("/api/v1/auth/me")
        assert response.status_code == 401

    async def test_cookie_auth(self, async_client: AsyncClient, test_user: User, user_password):
        """Browser clients authenticate with the HttpOnly cookie."""
        await async_client.post(
            "/api/v1/auth/login",
            json={"email": test_user.email, "password": user_password},
        )
        response = await async_client.get("/api/v1/auth/me")
        assert response.status_code == 200

    async def test_session_free_user(self, async_client: AsyncClient, auth_headers: dict):
        """Free accounts resolve to no capabilities."""
        response = await async_client.get("/api/v1/auth/session", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["capabilities"] == []
        assert data["is_admin"] is False

    async def test_session_enterprise_user(
        self, async_client: AsyncClient, enterprise_user: User, headers_for
    ):
        """Enterprise accounts get live analysis and API access."""
        response = await async_client.get(
            "/api/v1/auth/session", headers=headers_for(enterprise_user)
        )
        assert response.json()["capabilities"] == ["api_access", "real_analysis"]

    async def test_session_admin(self, async_client: AsyncClient, admin_user: User, headers_for):
        """Admins are flagged and get everything except user management."""
        response = await async_client.get(
            "/api/v1/auth/session", headers=headers_for(admin_user)
        )
        data = response.json()
        assert data["is_admin"] is True
        assert "manage_users" not in data["capabilities"]
        assert "bypass_usage_limits" in data["capabilities"]

    async def test_update_me(self, async_client: AsyncClient, auth_headers: dict):
        """Profile fields can be updated."""
        response = await async_client.put(
            "/api/v1/auth/me",
            headers=auth_headers,
            json={"name": "Renamed", "company": "New Co"},
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert response.json()["company"] == "New Co"

    async def test_logout_clears_cookies(self, async_client: AsyncClient, auth_headers: dict):
        """Test logout succeeds."""
        response = await async_client.post("/api/v1/auth/logout", headers=auth_headers)
        assert response.status_code == 200
        assert "access_token" in response.headers.get("set-cookie", "")


class TestPasswordChange:
    """Tests for password change."""

    async def test_change_password(
        self, async_client: AsyncClient, test_user: User, auth_headers: dict, user_password
    ):
        """The new password works for login afterwards."""
        response = await async_client.post(
            "/api/v1/auth/password/change",
            headers=auth_headers,
            json={"current_password": user_password, "new_password": NEW_PASSWORD},
        )
        assert response.status_code == 200

        login = await async_client.post(
            "/api/v1/auth/login",
            json={"email": test_user.email, "password": NEW_PASSWORD},
        )
        assert login.status_code == 200

    async def test_change_password_wrong_current(
        self, async_client: AsyncClient, auth_headers: dict
    ):
        """Test password change with a wrong current password fails."""
        response = await async_client.post(
            "/api/v1/auth/password/change",
            headers=auth_headers,
            json={"current_password": "WrongPassword1", "new_password": NEW_PASSWORD},
        )
        assert response.status_code == 400


class TestAccountDeletion:
    """Tests for account deletion."""

    async def test_requires_confirmation(self, async_client: AsyncClient, auth_headers: dict):
        """Test deletion without the exact phrase fails."""
        response = await async_client.request(
            "DELETE",
            "/api/v1/auth/account",
            headers=auth_headers,
            json={"confirmation": "delete my account"},
        )
        assert response.status_code == 400

    async def test_delete_account(
        self,
        async_client: AsyncClient,
        test_user: User,
        auth_headers: dict,
        db_session: AsyncSession,
    ):
        """The user and their analyses are removed and the deletion is audited."""
        user_id = test_user.id
        created = await async_client.post(
            "/api/v1/analyses",
            headers=auth_headers,
            json={"website": "example.com", "prompts": ["best crm"]},
        )
        assert created.status_code == 201

        response = await async_client.request(
            "DELETE",
            "/api/v1/auth/account",
            headers=auth_headers,
            json={"confirmation": "DELETE MY ACCOUNT"},
        )
        assert response.status_code == 200

        assert (await db_session.execute(select(User).where(User.id == user_id))).first() is None
        assert (
            await db_session.execute(select(Analysis).where(Analysis.user_id == user_id))
        ).first() is None
        audit = (
            await db_session.execute(select(AuditLog).where(AuditLog.target_id == user_id))
        ).scalar_one()
        assert audit.action == "account_deleted"
        assert audit.details == {"analyses_deleted": 1}

        me = await async_client.get("/api/v1/auth/me", headers=auth_headers)
        assert me.status_code == 401
