"""
Integration tests for admin user management, stats and audit logs.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models.admin import AuditAction, AuditTargetType
from infrastructure.database.models.payment import PaymentLog
from infrastructure.database.models.user import User
from services.audit import record_audit

pytestmark = pytest.mark.asyncio


class TestAccessControl:
    """Admin routes are closed to regular users."""

    @pytest.mark.parametrize(
        "path", ["/api/v1/admin/users", "/api/v1/admin/stats", "/api/v1/admin/audit-logs"]
    )
    async def test_regular_user_forbidden(
        self, async_client: AsyncClient, auth_headers: dict, path: str
    ):
        """Test non-admins get 403."""
        response = await async_client.get(path, headers=auth_headers)
        assert response.status_code == 403

    async def test_unauthenticated(self, async_client: AsyncClient):
        """Test admin routes require a token."""
        response = await async_client.get("/api/v1/admin/users")
        assert response.status_code == 401


class TestUserManagement:
    """Tests for listing, viewing and updating users."""

    async def test_list_and_search(
        self,
        async_client: AsyncClient,
        admin_user: User,
        test_user: User,
        starter_user: User,
        headers_for,
    ):
        """Users can be filtered by search text and tier."""
        headers = headers_for(admin_user)

        response = await async_client.get("/api/v1/admin/users", headers=headers)
        assert response.status_code == 200
        assert response.json()["total"] == 3

        search = await async_client.get(
            "/api/v1/admin/users", headers=headers, params={"search": "starter"}
        )
        assert [u["email"] for u in search.json()["users"]] == [starter_user.email]

        by_tier = await async_client.get(
            "/api/v1/admin/users", headers=headers, params={"subscription_tier": "free"}
        )
        assert {u["email"] for u in by_tier.json()["users"]} == {
            test_user.email,
            admin_user.email,
        }

    async def test_search_escapes_wildcards(
        self, async_client: AsyncClient, admin_user: User, test_user: User, headers_for
    ):
        """A literal percent sign matches nothing here."""
        response = await async_client.get(
            "/api/v1/admin/users", headers=headers_for(admin_user), params={"search": "%"}
        )
        assert response.json()["total"] == 0

    async def test_user_detail(
        self,
        async_client: AsyncClient,
        admin_user: User,
        enterprise_user: User,
        headers_for,
        make_analysis,
    ):
        """Detail includes usage and resolved capabilities."""
        await make_analysis(enterprise_user)

        response = await async_client.get(
            f"/api/v1/admin/users/{enterprise_user.id}", headers=headers_for(admin_user)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["analyses_this_month"] == 1
        assert data["capabilities"] == ["api_access", "real_analysis"]
        assert data["stripe_customer_id"] == "cus_enterprise"

    async def test_user_detail_not_found(
        self, async_client: AsyncClient, admin_user: User, headers_for
    ):
        """Test unknown users return 404."""
        response = await async_client.get(
            "/api/v1/admin/users/00000000-0000-0000-0000-000000000000",
            headers=headers_for(admin_user),
        )
        assert response.status_code == 404

    async def test_suspend_and_unsuspend(
        self,
        async_client: AsyncClient,
        admin_user: User,
        test_user: User,
        headers_for,
        auth_headers: dict,
    ):
        """Suspension locks the user out and is audited."""
        headers = headers_for(admin_user)
        response = await async_client.put(
            f"/api/v1/admin/users/{test_user.id}",
            headers=headers,
            json={"is_suspended": True, "suspended_reason": "abuse"},
        )

        assert response.status_code == 200
        assert response.json()["user"]["status"] == "suspended"
        assert response.json()["user"]["suspended_reason"] == "abuse"

        me = await async_client.get("/api/v1/auth/me", headers=auth_headers)
        assert me.status_code == 403

        logs = await async_client.get(
            "/api/v1/admin/audit-logs",
            headers=headers,
            params={"action": "user_suspended"},
        )
        entry = logs.json()["logs"][0]
        assert entry["target_id"] == test_user.id
        assert entry["actor_email"] == admin_user.email
        assert entry["details"]["new_value"] == {"status": "suspended"}

        restored = await async_client.put(
            f"/api/v1/admin/users/{test_user.id}", headers=headers, json={"is_suspended": False}
        )
        assert restored.json()["user"]["status"] == "active"
        assert restored.json()["user"]["suspended_reason"] is None

    async def test_cannot_suspend_self(
        self, async_client: AsyncClient, admin_user: User, headers_for
    ):
        """Test admins cannot suspend their own account."""
        response = await async_client.put(
            f"/api/v1/admin/users/{admin_user.id}",
            headers=headers_for(admin_user),
            json={"is_suspended": True},
        )
        assert response.status_code == 400

    async def test_admin_can_change_plan(
        self, async_client: AsyncClient, admin_user: User, test_user: User, headers_for
    ):
        """Plan changes do not need user management rights."""
        response = await async_client.put(
            f"/api/v1/admin/users/{test_user.id}",
            headers=headers_for(admin_user),
            json={"subscription_tier": "professional"},
        )
        assert response.status_code == 200
        assert response.json()["user"]["subscription_tier"] == "professional"
        assert response.json()["user"]["capabilities"] == ["real_analysis"]

    async def test_admin_cannot_change_role(
        self, async_client: AsyncClient, admin_user: User, test_user: User, headers_for
    ):
        """Role changes are reserved for super admins."""
        response = await async_client.put(
            f"/api/v1/admin/users/{test_user.id}",
            headers=headers_for(admin_user),
            json={"role": "admin"},
        )
        assert response.status_code == 403

    async def test_super_admin_changes_role(
        self,
        async_client: AsyncClient,
        super_admin_user: User,
        test_user: User,
        headers_for,
    ):
        """Super admins can promote users."""
        response = await async_client.put(
            f"/api/v1/admin/users/{test_user.id}",
            headers=headers_for(super_admin_user),
            json={"role": "admin"},
        )
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "admin"

    async def test_super_admin_cannot_change_own_role(
        self, async_client: AsyncClient, super_admin_user: User, headers_for
    ):
        """Test nobody can change their own role."""
        response = await async_client.put(
            f"/api/v1/admin/users/{super_admin_user.id}",
            headers=headers_for(super_admin_user),
            json={"role": "user"},
        )
        assert response.status_code == 403

    async def test_no_changes(
        self, async_client: AsyncClient, admin_user: User, test_user: User, headers_for
    ):
        """An update that changes nothing is a no-op."""
        response = await async_client.put(
            f"/api/v1/admin/users/{test_user.id}",
            headers=headers_for(admin_user),
            json={"subscription_tier": "free"},
        )
        assert response.json()["message"] == "No changes were made"


class TestPlatformStats:
    """Tests for GET /admin/stats."""

    async def test_stats(
        self,
        async_client: AsyncClient,
        admin_user: User,
        test_user: User,
        starter_user: User,
        headers_for,
        make_analysis,
        db_session: AsyncSession,
    ):
        """Headline numbers count users, analyses and paid checkouts only."""
        await make_analysis(starter_user)
        await make_analysis(test_user, is_simulated=True)
        db_session.add_all(
            [
                PaymentLog(
                    user_id=starter_user.id,
                    event_id="evt_paid",
                    event_type="checkout.session.completed",
                    plan="starter",
                    amount_cents=2900,
                    currency="usd",
                    status="paid",
                ),
                PaymentLog(
                    user_id=starter_user.id,
                    event_id="evt_intent",
                    event_type="payment_intent.succeeded",
                    amount_cents=2900,
                    currency="usd",
                    status="succeeded",
                ),
            ]
        )
        await db_session.commit()

        response = await async_client.get("/api/v1/admin/stats", headers=headers_for(admin_user))

        assert response.status_code == 200
        data = response.json()
        assert data["total_users"] == 3
        assert data["users_by_tier"]["free"] == 2
        assert data["users_by_tier"]["starter"] == 1
        assert data["users_by_tier"]["enterprise"] == 0
        assert data["active_paid_subscriptions"] == 1
        assert data["total_analyses"] == 2
        assert data["analyses_this_month"] == 2
        assert data["simulated_analyses_this_month"] == 1
        assert data["revenue_cents"] == 2900
        assert data["revenue_this_month_cents"] == 2900
        assert data["active_api_keys"] == 0


class TestAuditLogs:
    """Tests for GET /admin/audit-logs."""

    async def test_filters(
        self,
        async_client: AsyncClient,
        admin_user: User,
        test_user: User,
        headers_for,
        db_session: AsyncSession,
    ):
        """Logs can be filtered by target and sorted."""
        await record_audit(
            db_session,
            actor_user_id=test_user.id,
            action=AuditAction.ANALYSIS_DELETED,
            target_type=AuditTargetType.ANALYSIS,
            target_id="analysis-1",
        )
        await record_audit(
            db_session,
            actor_user_id=admin_user.id,
            action=AuditAction.USER_UPDATED,
            target_type=AuditTargetType.USER,
            target_id=test_user.id,
        )
        await db_session.commit()
        headers = headers_for(admin_user)

        everything = await async_client.get("/api/v1/admin/audit-logs", headers=headers)
        assert everything.json()["total"] == 2

        analyses = await async_client.get(
            "/api/v1/admin/audit-logs", headers=headers, params={"target_type": "analysis"}
        )
        data = analyses.json()
        assert data["total"] == 1
        assert data["logs"][0]["actor_email"] == test_user.email
        assert data["logs"][0]["target_id"] == "analysis-1"

        by_actor = await async_client.get(
            "/api/v1/admin/audit-logs", headers=headers, params={"actor_user_id": admin_user.id}
        )
        assert [log["action"] for log in by_actor.json()["logs"]] == ["user_updated"]
