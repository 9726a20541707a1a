"""Payment adapters for billing and subscription management."""

from .stripe_adapter import (
    CheckoutSession,
    StripeAdapter,
    StripeAPIError,
    StripeAuthError,
    StripeError,
    StripeWebhookError,
    WebhookEvent,
    create_stripe_adapter,
    plan_for_price,
    plan_price_ids,
    sign_payload,
)

__all__ = [
    "StripeAdapter",
    "CheckoutSession",
    "WebhookEvent",
    "StripeError",
    "StripeAPIError",
    "StripeWebhookError",
    "StripeAuthError",
    "create_stripe_adapter",
    "plan_for_price",
    "plan_price_ids",
    "sign_payload",
]
