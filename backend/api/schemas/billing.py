"""
Billing and subscription request/response schemas.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class PlanLimits(BaseModel):
    """Usage limits for a subscription plan."""

    analyses_per_month: int = Field(..., description="Analyses allowed per calendar month")
    prompts_per_analysis: int = Field(..., description="Prompts checked per analysis")
    api_access: bool = Field(..., description="Whether the public API is available")
    real_analysis: bool = Field(
        ..., description="Whether analyses query live AI providers instead of demo data"
    )


class PlanInfo(BaseModel):
    """Information about a subscription plan."""

    id: str = Field(..., description="Plan ID (free, trial, starter, professional, enterprise)")
    name: str = Field(..., description="Display name of the plan")
    price_monthly: float = Field(..., description="Monthly price in USD")
    features: list[str] = Field(..., description="List of features included in the plan")
    limits: PlanLimits = Field(..., description="Usage limits for the plan")
    purchasable: bool = Field(..., description="Whether the plan can be bought through checkout")


class PricingResponse(BaseModel):
    """Response containing all available pricing plans."""

    plans: list[PlanInfo] = Field(..., description="List of all available plans")


class SubscriptionStatus(BaseModel):
    """Current subscription status for a user."""

    subscription_tier: str = Field(..., description="Current subscription tier")
    subscription_status: str = Field(
        ..., description="Subscription status (active, trialing, cancelled, past_due, expired)"
    )
    subscription_expires: datetime | None = Field(None, description="End of the current period")
    trial_ends_at: datetime | None = Field(None, description="When the free trial ends")
    customer_id: str | None = Field(None, description="Stripe customer ID")
    subscription_id: str | None = Field(None, description="Stripe subscription ID")
    can_cancel: bool = Field(..., description="Whether there is a subscription to cancel")
    analyses_this_month: int = Field(0, description="Analyses created this month")
    analyses_limit: int | None = Field(None, description="Monthly allowance, null when unlimited")


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    plan: str = Field(..., description="Plan ID (starter, professional, enterprise)")

    model_config = {"json_schema_extra": {"example": {"plan": "starter"}}}


class CheckoutResponse(BaseModel):
    """Response containing checkout URL."""

    checkout_url: str = Field(..., description="URL to the Stripe checkout page")
    session_id: str = Field(..., description="Stripe checkout session ID")


class StripeEventType(StrEnum):
    """Stripe webhook event types handled by the service."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class SubscriptionCancelResponse(BaseModel):
    """Response after cancelling subscription."""

    success: bool = Field(..., description="Whether cancellation was successful")
    message: str = Field(..., description="Status message")
