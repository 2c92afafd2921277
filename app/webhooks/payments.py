"""Stripe payment webhook"""

import json
from typing import Any, Dict, Optional
from uuid import UUID

import stripe
import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from app.api.deps import get_payment_handler
from app.config import settings
from app.models.order import OrderType
from app.schemas.order import OrderCreate
from app.schemas.payment import PaymentEvent, PaymentEventOutcome, WebhookResponse
from app.services.payments import PaymentConfirmationHandler

router = APIRouter()
logger = structlog.get_logger()

EVENT_OUTCOMES = {
    "payment_intent.succeeded": PaymentEventOutcome.SUCCEEDED,
    "payment_intent.payment_failed": PaymentEventOutcome.FAILED,
}


def verify_event(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """Check the Stripe-Signature header and decode the event body"""
    body = payload.decode("utf-8")

    if not secret:
        logger.error("Webhook secret not configured, rejecting event")
        raise HTTPException(status_code=400, detail="Webhook secret not configured")

    if not signature:
        raise HTTPException(status_code=400, detail="Missing signature")
    try:
        stripe.WebhookSignature.verify_header(
            body,
            signature,
            secret,
            tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature invalid", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        return json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")


def _uuid(value) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        logger.warning("Ignoring malformed id in payment metadata", value=value)
        return None


def _order_spec(metadata: Dict[str, Any], reservation_id: Optional[UUID]) -> Optional[OrderCreate]:
    """Cart contents carried in the payment intent's metadata, if any"""
    restaurant_id = _uuid(metadata.get("restaurant_id"))
    if restaurant_id is None:
        return None

    default_type = OrderType.PRE_ORDER if reservation_id else OrderType.DINE_IN
    try:
        items = json.loads(metadata.get("items") or "[]")
        return OrderCreate(
            restaurant_id=restaurant_id,
            reservation_id=reservation_id,
            table_id=_uuid(metadata.get("table_id")),
            order_type=metadata.get("order_type") or default_type,
            items=items,
            tip_cents=int(metadata.get("tip_cents") or 0),
            customer_name=metadata.get("customer_name"),
            customer_phone=metadata.get("customer_phone"),
            customer_email=metadata.get("customer_email"),
        )
    except (ValueError, ValidationError) as e:
        logger.warning("Unusable order metadata on payment", error=str(e))
        return None


def parse_event(event: Dict[str, Any]) -> Optional[PaymentEvent]:
    """Translate a Stripe event into a PaymentEvent; None for event types we ignore"""
    outcome = EVENT_OUTCOMES.get(event.get("type"))
    if outcome is None:
        return None

    intent = (event.get("data") or {}).get("object") or {}
    metadata = intent.get("metadata") or {}
    reservation_id = _uuid(metadata.get("reservation_id"))

    return PaymentEvent(
        payment_reference=intent["id"],
        outcome=outcome,
        amount_cents=intent.get("amount_received") or intent.get("amount"),
        reservation_id=reservation_id,
        order=_order_spec(metadata, reservation_id),
    )


@router.post("/webhook", response_model=WebhookResponse)
async def handle_payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    handler: PaymentConfirmationHandler = Depends(get_payment_handler),
):
    """
    Receive payment notifications.

    Stripe retries anything that is not a 2xx, so once the signature checks
    out the response is always 200 and outcomes are reported in the body.
    """
    payload = await request.body()
    event = verify_event(payload, stripe_signature, settings.stripe_webhook_secret)

    try:
        payment_event = parse_event(event)
    except (KeyError, TypeError, ValidationError) as e:
        logger.error("Malformed payment event", event_type=event.get("type"), error=str(e))
        return WebhookResponse(outcome="ignored")

    if payment_event is None:
        logger.info("Unhandled event type", event_type=event.get("type"))
        return WebhookResponse(outcome="ignored")

    try:
        result = await handler.handle(payment_event)
    except Exception as e:
        await handler.db.rollback()
        logger.exception(
            "Error processing payment event",
            payment_reference=payment_event.payment_reference,
            error=str(e),
        )
        return WebhookResponse(outcome="error")

    return WebhookResponse(
        outcome=result.outcome.value,
        order_id=result.order.id if result.order else None,
        reservation_id=result.reservation.id if result.reservation else None,
    )
