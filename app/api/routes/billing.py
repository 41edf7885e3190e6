import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.core.security import require_auth
from app.domain.schemas import CheckoutResponse
from app.services.billing import (
    BillingNotConfiguredError,
    WebhookSignatureError,
    create_checkout_session,
    handle_event,
    verify_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(auth_payload: dict = Depends(require_auth)):
    """Start a Pro subscription checkout for the current user."""
    user_id = auth_payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Please log in to continue")

    try:
        url = create_checkout_session(user_id, auth_payload.get("email"))
    except BillingNotConfiguredError as e:
        logger.error(f"Checkout unavailable: {e}")
        raise HTTPException(status_code=500, detail="Failed to create checkout session")

    return CheckoutResponse(url=url)


@router.post("/webhook")
async def stripe_webhook(request: Request):
    """Receive Stripe subscription events.

    Bad signatures are rejected before anything is written. Store failures
    bubble up as 500 so Stripe redelivers the event.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = verify_webhook(payload, sig_header)
    except BillingNotConfiguredError as e:
        logger.error(f"Stripe webhook rejected: {e}")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")
    except WebhookSignatureError as e:
        logger.warning(f"Invalid Stripe webhook signature: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    return handle_event(event)
