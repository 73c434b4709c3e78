from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from app.core.config import settings
from app.models.common import utcnow
from app.models.order import Order
from app.services.activation import build_activation_string
from app.services.http_client import build_async_client

logger = logging.getLogger(__name__)

ORDER_PAID = "order.paid"
ORDER_REFUNDED = "order.refunded"
ORDER_COMPLETED = "order.completed"
ORDER_USAGE_ALERT = "order.usage_alert"
ORDER_VALIDITY_WARNING = "order.validity_warning"

# commission/referral ledger reacts to money; email dispatch to everything the user sees
_LEDGER_TOPICS = {ORDER_PAID, ORDER_REFUNDED}
_EMAIL_TOPICS = {ORDER_COMPLETED, ORDER_USAGE_ALERT, ORDER_VALIDITY_WARNING}


class DownstreamNotifier(Protocol):
    async def publish(self, topic: str, order: Order, **extra: Any) -> None: ...


def order_payload(topic: str, order: Order, extra: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "topic": topic,
        "order_id": order.id,
        "user_id": order.user_id,
        "plan_id": order.plan_id,
        "status": order.status.value,
        "is_topup": order.is_topup,
        "occurred_at": utcnow().isoformat(),
    }
    if topic in _LEDGER_TOPICS:
        payload["amount_cents"] = order.amount_cents
        payload["currency"] = order.currency
    if topic == ORDER_COMPLETED and not order.is_topup:
        payload["activation"] = {
            "smdp_address": order.smdp_address,
            "activation_code": order.activation_code,
            "lpa_string": build_activation_string(order.smdp_address, order.activation_code),
            "iccid": order.iccid,
            "install_url": order.install_url or f"{settings.APP_BASE_URL.rstrip('/')}/install/{order.id}",
        }
    payload.update(extra)
    return payload


class HttpDownstreamNotifier:
    """Posts order events to the commission ledger and email dispatch services.

    Best-effort: a collaborator outage is logged and never fails the
    transition that triggered it.
    """

    def __init__(self, ledger_url: str | None = None, email_url: str | None = None):
        self.ledger_url = (ledger_url if ledger_url is not None else settings.COMMISSION_LEDGER_URL).strip()
        self.email_url = (email_url if email_url is not None else settings.EMAIL_DISPATCH_URL).strip()

    def _target(self, topic: str) -> str:
        if topic in _LEDGER_TOPICS:
            return self.ledger_url
        if topic in _EMAIL_TOPICS:
            return self.email_url
        return ""

    async def publish(self, topic: str, order: Order, **extra: Any) -> None:
        url = self._target(topic)
        if not url:
            logger.info("downstream skipped topic=%s order_id=%s: no endpoint configured", topic, order.id)
            return
        payload = order_payload(topic, order, extra)
        # repeatable topics (alerts) are keyed by the notification that raised them
        key = f"{topic}:{order.id}"
        if extra.get("notification_id"):
            key = f"{key}:{extra['notification_id']}"
        try:
            async with build_async_client() as client:
                r = await client.post(url, json=payload, headers={"Idempotency-Key": key})
            if r.status_code >= 400:
                logger.warning(
                    "downstream rejected topic=%s order_id=%s http=%s body=%s",
                    topic,
                    order.id,
                    r.status_code,
                    r.text[:200],
                )
        except httpx.HTTPError as e:
            logger.warning("downstream failed topic=%s order_id=%s err=%s", topic, order.id, str(e)[:220])
