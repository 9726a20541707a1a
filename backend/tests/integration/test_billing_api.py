"""
Integration tests for billing API routes.

Tests cover:
- Pricing and subscription status
- Checkout and cancellation against a mocked Stripe API
- Signed webhook processing, idempotency and rejection paths
"""

import json
from urllib.parse import parse_qs

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import sign_payload
from infrastructure.database.models.payment import PaymentLog
from infrastructure.database.models.user import User

pytestmark = pytest.mark.asyncio


async def send_webhook(client: AsyncClient, payload: dict, secret: str):
    body = json.dumps(payload).encode()
    return await client.post(
        "/api/v1/billing/webhook",
        content=body,
        headers={
            "Stripe-Signature": sign_payload(body, secret),
            "Content-Type": "application/json",
        },
    )


def checkout_event(
    user_id: str,
    plan: str = "starter",
    payment_status: str = "paid",
    event_id: str = "evt_checkout_1",
) -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_123",
                "customer": "cus_new",
                "subscription": "sub_new",
                "payment_status": payment_status,
                "amount_total": 2900,
                "currency": "usd",
                "metadata": {"user_id": user_id, "plan": plan},
            }
        },
    }


def subscription_event(
    event_type: str, customer: str, price_id: str, status: str, event_id: str
) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": "sub_starter",
                "customer": customer,
                "status": status,
                "current_period_end": 1_900_000_000,
                "items": {"data": [{"price": {"id": price_id}}]},
                "metadata": {},
            }
        },
    }


class TestPricing:
    """Tests for the public pricing endpoint."""

    async def test_pricing(self, async_client: AsyncClient):
        """All plans are listed; only paid ones are purchasable."""
        response = await async_client.get("/api/v1/billing/pricing")

        assert response.status_code == 200
        plans = {p["id"]: p for p in response.json()["plans"]}
        assert set(plans) == {"free", "trial", "starter", "professional", "enterprise"}
        assert plans["free"]["purchasable"] is False
        assert plans["enterprise"]["purchasable"] is True
        assert plans["enterprise"]["limits"]["api_access"] is True
        assert plans["starter"]["limits"]["analyses_per_month"] == 10


class TestSubscriptionStatus:
    """Tests for GET /billing/subscription."""

    async def test_paid_subscription(
        self, async_client: AsyncClient, starter_user: User, headers_for
    ):
        """Paid subscribers can cancel and see their allowance."""
        response = await async_client.get(
            "/api/v1/billing/subscription", headers=headers_for(starter_user)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["subscription_tier"] == "starter"
        assert data["customer_id"] == "cus_starter"
        assert data["can_cancel"] is True
        assert data["analyses_this_month"] == 0
        assert data["analyses_limit"] == 10

    async def test_free_user(self, async_client: AsyncClient, auth_headers: dict):
        """Free users have nothing to cancel."""
        response = await async_client.get("/api/v1/billing/subscription", headers=auth_headers)
        data = response.json()
        assert data["subscription_tier"] == "free"
        assert data["can_cancel"] is False
        assert data["analyses_limit"] == 1


class TestCheckout:
    """Tests for POST /billing/checkout."""

    async def test_checkout_new_customer(
        self, async_client: AsyncClient, auth_headers: dict, test_user: User, stripe_requests
    ):
        """A checkout session is created for the configured price."""
        response = await async_client.post(
            "/api/v1/billing/checkout", headers=auth_headers, json={"plan": "starter"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["checkout_url"] == "https://checkout.stripe.com/c/cs_test_123"
        assert data["session_id"] == "cs_test_123"

        form = parse_qs(stripe_requests[0].content.decode())
        assert form["line_items[0][price]"] == ["price_starter"]
        assert form["metadata[user_id]"] == [test_user.id]
        assert form["customer_email"] == [test_user.email]

    async def test_checkout_existing_customer(
        self, async_client: AsyncClient, starter_user: User, headers_for, stripe_requests
    ):
        """Existing Stripe customers are reused."""
        response = await async_client.post(
            "/api/v1/billing/checkout",
            headers=headers_for(starter_user),
            json={"plan": "enterprise"},
        )

        assert response.status_code == 200
        form = parse_qs(stripe_requests[0].content.decode())
        assert form["customer"] == ["cus_starter"]
        assert form["line_items[0][price]"] == ["price_enterprise"]

    @pytest.mark.parametrize("plan", ["free", "trial", "platinum"])
    async def test_checkout_invalid_plan(
        self, async_client: AsyncClient, auth_headers: dict, plan: str
    ):
        """Only purchasable plans can be bought."""
        response = await async_client.post(
            "/api/v1/billing/checkout", headers=auth_headers, json={"plan": plan}
        )
        assert response.status_code == 400

    async def test_checkout_admin(self, async_client: AsyncClient, admin_user: User, headers_for):
        """Admins already have full access."""
        response = await async_client.post(
            "/api/v1/billing/checkout", headers=headers_for(admin_user), json={"plan": "starter"}
        )
        assert response.status_code == 400


class TestCancel:
    """Tests for POST /billing/cancel."""

    async def test_cancel(
        self, async_client: AsyncClient, starter_user: User, headers_for, stripe_requests
    ):
        """Cancellation is scheduled at period end in Stripe."""
        response = await async_client.post(
            "/api/v1/billing/cancel", headers=headers_for(starter_user)
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert stripe_requests[0].url.path == "/v1/subscriptions/sub_starter"

    async def test_cancel_without_subscription(
        self, async_client: AsyncClient, auth_headers: dict
    ):
        """Test cancelling without a subscription returns 404."""
        response = await async_client.post("/api/v1/billing/cancel", headers=auth_headers)
        assert response.status_code == 404


class TestWebhook:
    """Tests for POST /billing/webhook."""

    async def test_checkout_completed_activates_plan(
        self,
        async_client: AsyncClient,
        test_user: User,
        stripe_adapter,
        db_session: AsyncSession,
    ):
        """A paid checkout upgrades the user and logs the payment."""
        response = await send_webhook(
            async_client, checkout_event(test_user.id), stripe_adapter.webhook_secret
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

        await db_session.refresh(test_user)
        assert test_user.subscription_tier == "starter"
        assert test_user.subscription_status == "active"
        assert test_user.stripe_customer_id == "cus_new"
        assert test_user.stripe_subscription_id == "sub_new"
        assert test_user.payment_verified is True

        log = (await db_session.execute(select(PaymentLog))).scalar_one()
        assert log.status == "paid"
        assert log.amount_cents == 2900
        assert log.user_id == test_user.id

    async def test_duplicate_delivery_is_skipped(
        self, async_client: AsyncClient, test_user: User, stripe_adapter, db_session: AsyncSession
    ):
        """The same event id is processed once."""
        event = checkout_event(test_user.id)
        await send_webhook(async_client, event, stripe_adapter.webhook_secret)
        response = await send_webhook(async_client, event, stripe_adapter.webhook_secret)

        assert response.status_code == 200
        assert response.json()["message"] == "already processed"
        assert len((await db_session.execute(select(PaymentLog))).scalars().all()) == 1

    async def test_unpaid_checkout_does_not_upgrade(
        self, async_client: AsyncClient, test_user: User, stripe_adapter, db_session: AsyncSession
    ):
        """Checkout sessions awaiting payment leave the plan alone."""
        await send_webhook(
            async_client,
            checkout_event(test_user.id, payment_status="unpaid"),
            stripe_adapter.webhook_secret,
        )
        await db_session.refresh(test_user)
        assert test_user.subscription_tier == "free"

    async def test_admin_plan_is_not_changed(
        self, async_client: AsyncClient, admin_user: User, stripe_adapter, db_session: AsyncSession
    ):
        """Webhooks never touch admin accounts."""
        await send_webhook(
            async_client, checkout_event(admin_user.id), stripe_adapter.webhook_secret
        )
        await db_session.refresh(admin_user)
        assert admin_user.subscription_tier == "free"

    async def test_subscription_updated(
        self, async_client: AsyncClient, starter_user: User, stripe_adapter, db_session: AsyncSession
    ):
        """Plan and status follow the Stripe subscription."""
        response = await send_webhook(
            async_client,
            subscription_event(
                "customer.subscription.updated",
                "cus_starter",
                "price_professional",
                "past_due",
                "evt_sub_1",
            ),
            stripe_adapter.webhook_secret,
        )

        assert response.status_code == 200
        await db_session.refresh(starter_user)
        assert starter_user.subscription_tier == "professional"
        assert starter_user.subscription_status == "past_due"
        assert starter_user.stripe_price_id == "price_professional"
        assert starter_user.subscription_expires is not None

    async def test_subscription_deleted_downgrades(
        self, async_client: AsyncClient, starter_user: User, stripe_adapter, db_session: AsyncSession
    ):
        """Ending the subscription drops the user to free."""
        await send_webhook(
            async_client,
            subscription_event(
                "customer.subscription.deleted",
                "cus_starter",
                "price_starter",
                "canceled",
                "evt_sub_2",
            ),
            stripe_adapter.webhook_secret,
        )

        await db_session.refresh(starter_user)
        assert starter_user.subscription_tier == "free"
        assert starter_user.subscription_status == "cancelled"
        assert starter_user.stripe_subscription_id is None

    async def test_invoice_failed_marks_past_due(
        self, async_client: AsyncClient, starter_user: User, stripe_adapter, db_session: AsyncSession
    ):
        """A failed invoice puts the subscription past due."""
        await send_webhook(
            async_client,
            {
                "id": "evt_invoice_1",
                "type": "invoice.payment_failed",
                "data": {"object": {"customer": "cus_starter", "amount_due": 2900}},
            },
            stripe_adapter.webhook_secret,
        )

        await db_session.refresh(starter_user)
        assert starter_user.subscription_status == "past_due"

    async def test_unhandled_event_type(self, async_client: AsyncClient, stripe_adapter):
        """Unknown event types are acknowledged and ignored."""
        response = await send_webhook(
            async_client,
            {"id": "evt_other", "type": "customer.created", "data": {"object": {}}},
            stripe_adapter.webhook_secret,
        )
        assert response.status_code == 200
        assert response.json()["message"] == "ignored"

    async def test_missing_signature(self, async_client: AsyncClient):
        """Test webhook without a signature is rejected."""
        response = await async_client.post("/api/v1/billing/webhook", content=b"{}")
        assert response.status_code == 401

    async def test_invalid_signature(
        self, async_client: AsyncClient, test_user: User, db_session: AsyncSession
    ):
        """Payloads signed with another secret are rejected."""
        response = await send_webhook(async_client, checkout_event(test_user.id), "whsec_wrong")
        assert response.status_code == 401

        await db_session.refresh(test_user)
        assert test_user.subscription_tier == "free"

    async def test_invalid_json(self, async_client: AsyncClient, stripe_adapter):
        """A correctly signed body that is not JSON is a bad request."""
        body = b"not json"
        response = await async_client.post(
            "/api/v1/billing/webhook",
            content=body,
            headers={"Stripe-Signature": sign_payload(body, stripe_adapter.webhook_secret)},
        )
        assert response.status_code == 400
