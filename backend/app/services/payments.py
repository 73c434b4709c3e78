from __future__ import annotations

import json
import logging
from typing import Any

import stripe

from app.core.config import settings

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """The processor refused or failed a money movement."""


def parse_payment_event(body: bytes, signature: str | None) -> dict[str, Any]:
    """Verify the processor signature, then decode the event.

    Raises stripe.SignatureVerificationError for a missing, stale or wrong
    signature and ValueError for a body that is not a JSON object.
    """
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if not secret or not signature:
        raise stripe.SignatureVerificationError("signature or webhook secret missing", signature, body)
    payload = body.decode("utf-8")
    stripe.WebhookSignature.verify_header(
        payload, signature, secret, tolerance=settings.PAYMENT_WEBHOOK_TOLERANCE_SECONDS
    )
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValueError("event is not an object")
    return event


async def refund_payment(processor_ref: str, order_id: str, reason: str | None = None) -> str | None:
    """Refund a captured payment in full. Returns the processor's refund id.

    Unset PAYMENT_API_KEY means "log and skip" (returns None). The order id is
    the idempotency key.
    """
    if not settings.PAYMENT_API_KEY:
        logger.warning("processor refund skipped order_id=%s: PAYMENT_API_KEY not set", order_id)
        return None
    try:
        payment_intent = processor_ref
        if processor_ref.startswith("cs_"):
            # only the checkout session was recorded
            session = await stripe.checkout.Session.retrieve_async(processor_ref, api_key=settings.PAYMENT_API_KEY)
            payment_intent = session.payment_intent
        refund = await stripe.Refund.create_async(
            api_key=settings.PAYMENT_API_KEY,
            payment_intent=payment_intent,
            reason="requested_by_customer",
            metadata={"order_id": order_id, "admin_reason": (reason or "")[:200]},
            idempotency_key=f"refund-{order_id}",
        )
    except stripe.StripeError as e:
        logger.warning("processor refund failed order_id=%s err=%s", order_id, str(e)[:220])
        raise PaymentError(str(e)[:255]) from e
    logger.info("processor refund issued order_id=%s refund_id=%s", order_id, refund.id)
    return refund.id


def checkout_facts(obj: dict[str, Any]) -> dict[str, Any]:
    """Payment facts from a checkout session object, in Order column names."""
    currency = obj.get("currency")
    amount = obj.get("amount_total")
    return {
        "processor_ref": str(obj.get("payment_intent") or obj.get("id") or "")[:128] or None,
        "amount_cents": int(amount) if isinstance(amount, (int, float)) else None,
        "currency": str(currency).upper()[:3] if currency else None,
    }


def checkout_order_id(obj: dict[str, Any]) -> str | None:
    meta = obj.get("metadata") or {}
    value = meta.get("order_id") or meta.get("orderId") or obj.get("client_reference_id")
    return str(value) if value else None
