import hmac
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import enforce_webhook_rate_limit, get_partner, get_transitions
from app.core.config import settings
from app.core.db import get_db
from app.models.idempotency import NotificationSource
from app.schemas.webhooks import ReadinessOut, WebhookAck
from app.services.adapters.esim_access import EsimAccessClient
from app.services.idempotency import Admission, run_once
from app.services.notifications import PARTNER_TYPES, handle_partner_notification
from app.services.transitions import OrderTransitions

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/esim-access", response_model=ReadinessOut)
async def esim_access_ready():
    return ReadinessOut(service="esim-access", supported_events=list(PARTNER_TYPES))


@router.post("/esim-access", response_model=WebhookAck, dependencies=[Depends(enforce_webhook_rate_limit)])
async def esim_access_webhook(
    request: Request,
    x_webhook_secret: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
    transitions: OrderTransitions = Depends(get_transitions),
    client: EsimAccessClient = Depends(get_partner),
):
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Malformed body")

    notify_type = str(payload.get("notifyType") or "")
    # the partner's "send test" button carries no secret
    if notify_type == "CHECK_HEALTH":
        logger.info("partner health check received")
        return WebhookAck(effect="ignored")

    expected = settings.ESIMACCESS_WEBHOOK_SECRET
    if not expected or not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("partner webhook rejected: bad secret type=%s", notify_type)
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    notify_id = str(payload.get("notifyId") or "")
    if not notify_id:
        logger.warning("partner notification without id dropped type=%s", notify_type)
        return WebhookAck(effect="ignored")

    admission, effect = await run_once(
        db,
        NotificationSource.esim_access,
        notify_id,
        notify_type or "unknown",
        lambda: handle_partner_notification(db, transitions, client, payload, notify_id),
    )
    return WebhookAck(duplicate=admission == Admission.duplicate, effect=effect.value if effect else None)
