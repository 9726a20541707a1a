"""
Stripe billing adapter for subscription management.

Provides checkout session creation, subscription cancellation and webhook
signature verification against the Stripe REST API over httpx.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class StripeError(Exception):
    """Base exception for Stripe adapter errors."""


class StripeAPIError(StripeError):
    """Raised when the Stripe API returns an error."""


class StripeWebhookError(StripeError):
    """Raised when webhook verification or parsing fails."""


class StripeAuthError(StripeError):
    """Raised when the API key is missing."""


@dataclass
class CheckoutSession:
    """Hosted checkout session."""

    id: str
    url: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CheckoutSession":
        return cls(id=data.get("id", ""), url=data.get("url", ""))


@dataclass
class WebhookEvent:
    """Stripe webhook event data."""

    id: str
    type: str  # checkout.session.completed, customer.subscription.updated, etc.
    data_object: dict[str, Any]
    created: Optional[int] = None

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> "WebhookEvent":
        data = payload.get("data") or {}
        return cls(
            id=payload.get("id", ""),
            type=payload.get("type", ""),
            data_object=data.get("object") or {},
            created=payload.get("created"),
        )


def plan_price_ids() -> dict[str, Optional[str]]:
    """Configured Stripe price id per purchasable plan."""
    return {
        "starter": settings.stripe_price_starter,
        "professional": settings.stripe_price_professional,
        "enterprise": settings.stripe_price_enterprise,
    }


def plan_for_price(price_id: Optional[str]) -> Optional[str]:
    if not price_id:
        return None
    for plan, configured in plan_price_ids().items():
        if configured and configured == price_id:
            return plan
    return None


def _parse_signature_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


class StripeAdapter:
    """
    Stripe API adapter for subscription billing.

    Only the handful of endpoints this service needs are wrapped; requests
    are form encoded as the Stripe API expects.
    """

    API_BASE_URL = "https://api.stripe.com/v1"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.tolerance_seconds = (
            tolerance_seconds
            if tolerance_seconds is not None
            else settings.stripe_webhook_tolerance_seconds
        )
        self._transport = transport

        if not self.secret_key:
            logger.warning("Stripe secret key not configured. Set STRIPE_SECRET_KEY.")

    def _get_headers(self) -> dict[str, str]:
        if not self.secret_key:
            raise StripeAuthError("Stripe secret key not configured. Set STRIPE_SECRET_KEY.")
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to the Stripe API.

        Raises:
            StripeAPIError: If the request fails
        """
        url = f"{self.API_BASE_URL}/{endpoint}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                logger.info("Making %s request to %s", method, endpoint)
                response = await client.request(method, url, headers=headers, data=data)
                response.raise_for_status()
                return response.json() if response.content else {}

        except httpx.HTTPStatusError as e:
            error_detail = str(e)
            try:
                error_detail = e.response.json().get("error", {}).get("message", error_detail)
            except ValueError:
                pass
            logger.error("Stripe API error: %s", error_detail)
            raise StripeAPIError(f"API request failed: {error_detail}")
        except httpx.RequestError as e:
            logger.error("HTTP request error: %s", e)
            raise StripeAPIError(f"Request failed: {e}")

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        plan: str,
        user_id: str,
        email: str,
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """Create a subscription checkout session for ``plan``."""
        data = {
            "mode": "subscription",
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata[user_id]": user_id,
            "metadata[plan]": plan,
            "subscription_data[metadata][user_id]": user_id,
            "subscription_data[metadata][plan]": plan,
        }
        if customer_id:
            data["customer"] = customer_id
        else:
            data["customer_email"] = email

        response = await self._make_request("POST", "checkout/sessions", data)
        return CheckoutSession.from_api_response(response)

    async def cancel_subscription(self, subscription_id: str) -> bool:
        """Cancel at the end of the current billing period."""
        await self._make_request(
            "POST",
            f"subscriptions/{subscription_id}",
            {"cancel_at_period_end": "true"},
        )
        logger.info("Scheduled cancellation for subscription %s", subscription_id)
        return True

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature_header: str,
        now: Optional[float] = None,
    ) -> bool:
        """
        Verify a ``Stripe-Signature`` header.

        The signed content is ``"{t}.{payload}"`` hashed with HMAC SHA256;
        timestamps older than the tolerance are rejected.

        Raises:
            StripeWebhookError: If the webhook secret is not configured
        """
        if not self.webhook_secret:
            raise StripeWebhookError("Webhook secret not configured. Set STRIPE_WEBHOOK_SECRET.")

        timestamp, signatures = _parse_signature_header(signature_header or "")
        if timestamp is None or not signatures:
            logger.warning("Malformed Stripe-Signature header")
            return False

        current = time.time() if now is None else now
        if abs(current - timestamp) > self.tolerance_seconds:
            logger.warning("Stripe webhook timestamp outside tolerance")
            return False

        signed_payload = f"{timestamp}.".encode("utf-8") + payload
        expected = hmac.new(
            key=self.webhook_secret.encode("utf-8"),
            msg=signed_payload,
            digestmod=hashlib.sha256,
        ).hexdigest()

        is_valid = any(hmac.compare_digest(expected, sig) for sig in signatures)
        if not is_valid:
            logger.warning("Webhook signature verification failed")
        return is_valid

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        """
        Raises:
            StripeWebhookError: If the payload is not a Stripe event
        """
        event = WebhookEvent.from_webhook_payload(payload)
        if not event.type:
            raise StripeWebhookError("Webhook payload has no event type")
        logger.info("Parsed webhook event: %s", event.type, extra={"event_type": event.type})
        return event


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header value; used for local testing."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.".encode("utf-8") + payload,
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


def create_stripe_adapter(
    secret_key: Optional[str] = None,
    webhook_secret: Optional[str] = None,
) -> StripeAdapter:
    return StripeAdapter(secret_key=secret_key, webhook_secret=webhook_secret)
