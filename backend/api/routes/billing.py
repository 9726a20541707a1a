"""
Billing and subscription API routes.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import (
    StripeAdapter,
    StripeAPIError,
    StripeAuthError,
    StripeWebhookError,
    WebhookEvent,
    create_stripe_adapter,
    plan_for_price,
    plan_price_ids,
)
from api.dependencies import get_current_session
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    PlanInfo,
    PlanLimits,
    PricingResponse,
    StripeEventType,
    SubscriptionCancelResponse,
    SubscriptionStatus,
)
from core.capabilities import Session
from core.plans import PLANS, PURCHASABLE_PLANS
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.payment import PaymentLog
from infrastructure.database.models.user import SubscriptionTier, User
from services.analysis_service import AnalysisService
from services.kv_store import KeyValueStore, get_kv_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

WEBHOOK_IDEMPOTENCY_TTL = 60 * 60 * 24

# Stripe subscription status -> stored subscription_status
_STRIPE_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "cancelled",
    "incomplete": "past_due",
    "incomplete_expired": "expired",
    "paused": "past_due",
}


def get_stripe_adapter() -> StripeAdapter:
    """FastAPI dependency for the Stripe adapter."""
    return create_stripe_adapter()


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning("Ignoring invalid Stripe timestamp %r: %s", value, e)
        return None


def _metadata_user_id(obj: dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("user_id") or metadata.get("userId") or obj.get("client_reference_id")


def _subscription_price_id(obj: dict[str, Any]) -> Optional[str]:
    items = (obj.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


async def _lock_user(
    db: AsyncSession,
    user_id: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> Optional[User]:
    """Find the affected user by id, else by Stripe customer, with a row lock."""
    if user_id:
        try:
            uuid.UUID(str(user_id))
        except (ValueError, AttributeError):
            logger.error("Invalid user_id format in webhook payload: %r", user_id)
            return None
        result = await db.execute(select(User).where(User.id == str(user_id)).with_for_update())
        user = result.scalar_one_or_none()
        if user:
            return user
    if customer_id:
        result = await db.execute(
            select(User).where(User.stripe_customer_id == customer_id).with_for_update()
        )
        return result.scalar_one_or_none()
    return None


def _payment_log(
    event: WebhookEvent,
    user: Optional[User],
    status_value: str,
    plan: Optional[str] = None,
    amount_cents: Optional[int] = None,
    currency: Optional[str] = None,
    details: Optional[dict] = None,
) -> PaymentLog:
    return PaymentLog(
        user_id=user.id if user else None,
        event_id=event.id or None,
        event_type=event.type,
        plan=plan,
        amount_cents=amount_cents,
        currency=currency,
        status=status_value,
        details=details,
    )


async def _handle_checkout_completed(db: AsyncSession, event: WebhookEvent) -> PaymentLog:
    obj = event.data_object
    metadata = obj.get("metadata") or {}
    plan = metadata.get("plan")
    customer_id = obj.get("customer")
    amount = obj.get("amount_total")
    currency = obj.get("currency")

    user = await _lock_user(db, _metadata_user_id(obj), customer_id)
    if not user:
        logger.error("No user found for checkout session %s", obj.get("id"))
        return _payment_log(event, None, "user_not_found", plan, amount, currency)

    if obj.get("payment_status") != "paid":
        logger.info("Checkout session %s not paid yet, ignoring", obj.get("id"))
        return _payment_log(event, user, "unpaid", plan, amount, currency)

    if user.is_admin:
        logger.info("Skipping subscription change for admin account %s", user.id)
        return _payment_log(event, user, "skipped_admin", plan, amount, currency)

    if plan not in PURCHASABLE_PLANS:
        logger.warning("Checkout session %s has unknown plan %r", obj.get("id"), plan)
        return _payment_log(event, user, "invalid_plan", plan, amount, currency)

    user.subscription_tier = plan
    user.subscription_status = "active"
    user.payment_verified = True
    user.trial_ends_at = None
    if customer_id:
        user.stripe_customer_id = customer_id
    if obj.get("subscription"):
        user.stripe_subscription_id = obj["subscription"]
    logger.info("Checkout completed for user %s: plan=%s", user.id, plan)
    return _payment_log(event, user, "paid", plan, amount, currency)


async def _handle_payment_succeeded(db: AsyncSession, event: WebhookEvent) -> PaymentLog:
    obj = event.data_object
    user = await _lock_user(db, _metadata_user_id(obj), obj.get("customer"))
    plan = (obj.get("metadata") or {}).get("plan")
    if user and not user.is_admin:
        user.payment_verified = True
    logger.info("Payment intent %s succeeded", obj.get("id"))
    return _payment_log(
        event,
        user,
        "succeeded",
        plan,
        obj.get("amount_received") or obj.get("amount"),
        obj.get("currency"),
    )


async def _handle_subscription_changed(db: AsyncSession, event: WebhookEvent) -> PaymentLog:
    obj = event.data_object
    user = await _lock_user(db, _metadata_user_id(obj), obj.get("customer"))
    price_id = _subscription_price_id(obj)
    plan = plan_for_price(price_id)
    stripe_status = obj.get("status")

    if not user:
        logger.error("No user found for subscription %s", obj.get("id"))
        return _payment_log(event, None, "user_not_found", plan)

    if user.is_admin:
        logger.info("Skipping subscription change for admin account %s", user.id)
        return _payment_log(event, user, "skipped_admin", plan)

    if plan:
        user.subscription_tier = plan
    elif price_id:
        logger.warning("Price %s does not match any configured plan, keeping tier", price_id)
    user.subscription_status = _STRIPE_STATUS_MAP.get(stripe_status, "active")
    user.stripe_subscription_id = obj.get("id") or user.stripe_subscription_id
    user.stripe_price_id = price_id or user.stripe_price_id
    if obj.get("customer"):
        user.stripe_customer_id = obj["customer"]
    period_end = _from_timestamp(obj.get("current_period_end"))
    if period_end:
        user.subscription_expires = period_end

    logger.info(
        "Subscription %s for user %s: tier=%s status=%s",
        obj.get("id"),
        user.id,
        user.subscription_tier,
        user.subscription_status,
    )
    return _payment_log(event, user, stripe_status or "updated", plan, details={"price_id": price_id})


async def _handle_subscription_deleted(db: AsyncSession, event: WebhookEvent) -> PaymentLog:
    obj = event.data_object
    user = await _lock_user(db, _metadata_user_id(obj), obj.get("customer"))
    if not user:
        logger.error("No user found for deleted subscription %s", obj.get("id"))
        return _payment_log(event, None, "user_not_found")

    if user.is_admin:
        return _payment_log(event, user, "skipped_admin")

    previous_tier = user.subscription_tier
    user.subscription_tier = SubscriptionTier.FREE.value
    user.subscription_status = "cancelled"
    user.subscription_expires = None
    user.stripe_subscription_id = None
    user.stripe_price_id = None
    logger.info("Subscription deleted for user %s, downgraded to free", user.id)
    return _payment_log(event, user, "cancelled", previous_tier)


async def _handle_invoice_failed(db: AsyncSession, event: WebhookEvent) -> PaymentLog:
    obj = event.data_object
    user = await _lock_user(db, None, obj.get("customer"))
    if user and not user.is_admin:
        user.subscription_status = "past_due"
    logger.warning(
        "Payment failed for customer %s (subscription %s)",
        obj.get("customer"),
        obj.get("subscription"),
    )
    return _payment_log(
        event,
        user,
        "failed",
        amount_cents=obj.get("amount_due"),
        currency=obj.get("currency"),
    )


_HANDLERS = {
    StripeEventType.CHECKOUT_SESSION_COMPLETED: _handle_checkout_completed,
    StripeEventType.PAYMENT_INTENT_SUCCEEDED: _handle_payment_succeeded,
    StripeEventType.SUBSCRIPTION_CREATED: _handle_subscription_changed,
    StripeEventType.SUBSCRIPTION_UPDATED: _handle_subscription_changed,
    StripeEventType.SUBSCRIPTION_DELETED: _handle_subscription_deleted,
    StripeEventType.INVOICE_PAYMENT_FAILED: _handle_invoice_failed,
}


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing():
    """
    Get available subscription plans and pricing.

    Public endpoint - no authentication required.
    """
    plans = []

    for plan_id, plan_data in PLANS.items():
        plans.append(
            PlanInfo(
                id=plan_id,
                name=plan_data["name"],
                price_monthly=plan_data["price_monthly"],
                features=plan_data["features"],
                limits=PlanLimits(**plan_data["limits"]),
                purchasable=plan_id in PURCHASABLE_PLANS,
            )
        )

    return PricingResponse(plans=plans)


@router.get("/subscription", response_model=SubscriptionStatus)
async def get_subscription_status(
    session: Annotated[Session, Depends(get_current_session)],
    db: AsyncSession = Depends(get_db),
):
    """Get current user's subscription status and usage."""
    user = session.user
    usage = await AnalysisService(db).usage(session)
    return SubscriptionStatus(
        subscription_tier=user.subscription_tier,
        subscription_status=user.subscription_status,
        subscription_expires=user.subscription_expires,
        trial_ends_at=user.trial_ends_at,
        customer_id=user.stripe_customer_id,
        subscription_id=user.stripe_subscription_id,
        can_cancel=bool(user.stripe_subscription_id)
        and user.subscription_status not in ("cancelled", "expired"),
        analyses_this_month=usage["used"],
        analyses_limit=usage["limit"],
    )


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(get_rate_limit("checkout"))
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    session: Annotated[Session, Depends(get_current_session)],
    stripe: StripeAdapter = Depends(get_stripe_adapter),
):
    """
    Create a Stripe checkout session for a plan upgrade.

    Returns a checkout URL where the user can complete payment.
    """
    user = session.user
    if body.plan not in PURCHASABLE_PLANS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid plan. Must be one of: {', '.join(PURCHASABLE_PLANS)}",
        )

    if session.is_admin:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admin accounts already have full access",
        )

    price_id = plan_price_ids().get(body.plan)
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Price not configured for {body.plan}",
        )

    frontend_url = settings.frontend_url.rstrip("/")
    try:
        checkout = await stripe.create_checkout_session(
            price_id=price_id,
            plan=body.plan,
            user_id=str(user.id),
            email=user.email,
            success_url=f"{frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url}/pricing",
            customer_id=user.stripe_customer_id,
        )
    except StripeAuthError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment system not configured",
        )
    except StripeAPIError as e:
        logger.error("Checkout creation failed for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create checkout session. Please try again.",
        )

    logger.info("Created checkout session for user %s, plan=%s", user.id, body.plan)
    return CheckoutResponse(checkout_url=checkout.url, session_id=checkout.id)


@router.post("/cancel", response_model=SubscriptionCancelResponse)
@limiter.limit(get_rate_limit("checkout"))
async def cancel_subscription(
    request: Request,
    session: Annotated[Session, Depends(get_current_session)],
    stripe: StripeAdapter = Depends(get_stripe_adapter),
):
    """
    Cancel current subscription.

    The subscription stays active until the end of the billing period; the
    downgrade arrives with the customer.subscription.deleted webhook.
    """
    user = session.user
    if not user.stripe_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active subscription to cancel",
        )

    if user.subscription_status in ("cancelled", "expired"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subscription is already cancelled or expired",
        )

    logger.info("Subscription cancellation requested for user %s", user.id)
    try:
        await stripe.cancel_subscription(user.stripe_subscription_id)
    except (StripeAuthError, StripeAPIError) as e:
        logger.error("Stripe cancel failed for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel subscription. Please try again or contact support.",
        )

    return SubscriptionCancelResponse(
        success=True,
        message="Subscription will be cancelled at the end of the billing period.",
    )


@router.post("/webhook")
@limiter.limit(get_rate_limit("webhook"))
async def handle_webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
    db: AsyncSession = Depends(get_db),
    kv_store: KeyValueStore = Depends(get_kv_store),
    stripe: StripeAdapter = Depends(get_stripe_adapter),
):
    """
    Handle Stripe webhook events.

    - checkout.session.completed: paid checkout activates the purchased plan
    - payment_intent.succeeded: marks the payment as verified
    - customer.subscription.created / updated: syncs plan, status and period end
    - customer.subscription.deleted: downgrades to the free plan
    - invoice.payment_failed: marks the subscription past due

    Other event types are acknowledged and ignored.
    """
    body = await request.body()

    if not stripe.webhook_secret:
        logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook verification not configured")

    if not stripe_signature:
        logger.warning("Webhook received without signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing webhook signature",
        )

    try:
        valid = stripe.verify_webhook_signature(body, stripe_signature)
    except StripeWebhookError as e:
        logger.error("Webhook verification unavailable: %s", e)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook verification not configured")
    if not valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        payload = json.loads(body)
        event = stripe.parse_webhook_event(payload)
    except (json.JSONDecodeError, ValueError, AttributeError, StripeWebhookError) as e:
        logger.error("Invalid webhook payload: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    idempotency_key = f"webhook:processed:{event.id}" if event.id else None
    if idempotency_key:
        first_delivery = await kv_store.set_if_absent(
            idempotency_key, "1", ttl=WEBHOOK_IDEMPOTENCY_TTL
        )
        if not first_delivery:
            logger.info("Duplicate webhook event %s, skipping", event.id)
            return {"status": "ok", "message": "already processed"}

    try:
        event_type = StripeEventType(event.type)
    except ValueError:
        logger.info("Ignoring unhandled webhook event type: %s", event.type)
        return {"status": "ok", "message": "ignored"}

    logger.info("Webhook received: event=%s id=%s", event.type, event.id)

    try:
        payment_log = await _HANDLERS[event_type](db, event)
        db.add(payment_log)
        await db.commit()
    except Exception as e:
        logger.error("Webhook processing failed: %s", e, exc_info=True)
        await db.rollback()
        if idempotency_key:
            await kv_store.delete(idempotency_key)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook processing failed")

    logger.info("Webhook %s processed: %s", event.id, payment_log.status)
    return {"status": "ok"}
