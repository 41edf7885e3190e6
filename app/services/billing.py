"""
Stripe billing: checkout sessions and subscription webhooks.

Webhook payloads are trusted only after the Stripe-Signature header checks
out (HMAC-SHA256 over "<timestamp>.<raw body>"). Subscription events are
turned into a sync_subscription call carrying the provider's current state.
"""
import json
import logging

import stripe

from app.core.config import get_settings
from app.repositories.pro_status import ProStatusRepository
from app.services.pro_status import sync_subscription

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")
SUBSCRIPTION_EVENT_PREFIX = "customer.subscription."


class BillingNotConfiguredError(RuntimeError):
    """Raised when a required Stripe setting is missing."""


class WebhookSignatureError(ValueError):
    """Raised when a webhook payload fails signature verification."""


def is_active_status(status: str | None) -> bool:
    """Map a Stripe subscription status to the Pro grant bit."""
    return (status or "").strip().lower() in ACTIVE_STATUSES


def verify_webhook(payload: bytes, sig_header: str | None) -> dict:
    """Verify the Stripe-Signature header and return the parsed event.

    Raises:
        BillingNotConfiguredError: If STRIPE_WEBHOOK_SECRET is unset
        WebhookSignatureError: If the header is missing, malformed or wrong
    """
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise BillingNotConfiguredError("STRIPE_WEBHOOK_SECRET is not set")
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookSignatureError(f"Webhook payload is not UTF-8: {e}") from e

    try:
        stripe.WebhookSignature.verify_header(
            body,
            sig_header,
            settings.stripe_webhook_secret,
            settings.stripe_webhook_tolerance,
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e

    try:
        event = json.loads(body)
    except ValueError as e:
        raise WebhookSignatureError(f"Invalid webhook payload: {e}") from e
    if not isinstance(event, dict):
        raise WebhookSignatureError("Webhook payload is not a JSON object")
    return event


def _period_end(subscription: dict) -> int | None:
    period_end = subscription.get("current_period_end")
    if period_end:
        return period_end
    # Newer API versions moved the period onto subscription items
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_end")
    return None


def resolve_user_id(subscription: dict) -> str | None:
    """Find the user a subscription belongs to.

    Checkout sets metadata.user_id; older subscriptions are matched through
    the stored Stripe customer id.
    """
    user_id = (subscription.get("metadata") or {}).get("user_id")
    if user_id:
        return user_id

    customer_id = subscription.get("customer")
    if not customer_id:
        return None
    record = ProStatusRepository.get_by_customer(customer_id)
    return record["user_id"] if record else None


def handle_event(event: dict) -> dict:
    """Apply a verified Stripe event. Store errors propagate so Stripe retries."""
    event_type = event.get("type") or ""
    logger.info(f"Processing Stripe webhook: {event_type}")

    if not event_type.startswith(SUBSCRIPTION_EVENT_PREFIX):
        logger.info(f"Unhandled event type: {event_type}")
        return {"ok": True, "ignored": True, "type": event_type}

    subscription = (event.get("data") or {}).get("object") or {}
    customer_id = subscription.get("customer")

    user_id = resolve_user_id(subscription)
    if not user_id:
        logger.error(f"Could not find user for Stripe customer: {customer_id}")
        return {"ok": True, "ignored": True, "type": event_type}

    status = subscription.get("status")
    is_active = is_active_status(status)
    logger.info(f"Updating user {user_id}: isActive={is_active}, status={status}")

    result = sync_subscription(
        user_id=user_id,
        stripe_customer_id=customer_id,
        is_active=is_active,
        current_period_end=_period_end(subscription),
    )
    return {"ok": True, "applied": result.applied, "type": event_type}


def create_checkout_session(user_id: str, email: str | None) -> str:
    """Create a Stripe checkout session for the Pro monthly plan.

    Returns:
        The hosted checkout URL
    """
    settings = get_settings()
    if not settings.stripe_secret_key or not settings.stripe_price_pro_monthly:
        raise BillingNotConfiguredError("Stripe checkout is not configured")

    stripe.api_key = settings.stripe_secret_key
    session = stripe.checkout.Session.create(
        mode="subscription",
        payment_method_types=["card"],
        line_items=[{"price": settings.stripe_price_pro_monthly, "quantity": 1}],
        success_url=f"{settings.web_app_url}/dashboard?upgrade=success",
        cancel_url=f"{settings.web_app_url}/?upgrade=cancelled",
        customer_email=email,
        metadata={"user_id": user_id},
        subscription_data={"metadata": {"user_id": user_id}},
    )
    logger.info(f"Created checkout session for user {user_id}")
    return session.url
