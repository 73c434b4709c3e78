import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import enforce_webhook_rate_limit, get_partner, get_transitions
from app.core.db import get_db
from app.models.idempotency import NotificationSource
from app.schemas.webhooks import WebhookAck
from app.services.adapters.esim_access import EsimAccessClient
from app.services.idempotency import Admission, run_once
from app.services.notifications import handle_payment_event
from app.services.payments import parse_payment_event
from app.services.transitions import OrderTransitions

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/payments", response_model=WebhookAck, dependencies=[Depends(enforce_webhook_rate_limit)])
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    transitions: OrderTransitions = Depends(get_transitions),
    client: EsimAccessClient = Depends(get_partner),
):
    body = await request.body()
    try:
        event = parse_payment_event(body, stripe_signature)
    except stripe.SignatureVerificationError as e:
        logger.warning("payment webhook rejected: %s", e)
        raise HTTPException(status_code=401, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed body")

    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "unknown")
    if not event_id:
        logger.warning("payment event without id dropped type=%s", event_type)
        return WebhookAck(effect="ignored")

    admission, effect = await run_once(
        db,
        NotificationSource.payments,
        event_id,
        event_type,
        lambda: handle_payment_event(db, transitions, client, event),
    )
    return WebhookAck(duplicate=admission == Admission.duplicate, effect=effect.value if effect else None)
