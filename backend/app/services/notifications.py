"""Interpretation of admitted inbound notifications.

Handlers run only after the idempotency gate admitted the notification.
Each returns the effect to record on the gate row; IllegalTransition and
partner errors propagate to the caller, which classifies them.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.idempotency import NotificationEffect
from app.models.order import Order
from app.services.adapters.base import ProvisioningClient, UsageSample
from app.services.adapters.esim_access import parse_partner_time
from app.services.downstream import ORDER_USAGE_ALERT, ORDER_VALIDITY_WARNING
from app.services.order_state import OrderEvent
from app.services.payments import checkout_facts, checkout_order_id
from app.services.provisioning import provision_order
from app.services.recovery import RecoveryResult, recover_provisioning_order
from app.services.transitions import OrderTransitions, TransitionOutcome
from app.services.usage_sync import apply_usage_sample

logger = logging.getLogger(__name__)

PARTNER_TYPES = ("CHECK_HEALTH", "ORDER_STATUS", "SMDP_EVENT", "ESIM_STATUS", "DATA_USAGE", "VALIDITY_USAGE")

_ESIM_STATUS_EVENTS = {
    "IN_USE": OrderEvent.profile_activated,
    "USED_UP": OrderEvent.usage_depleted,
    "USED_EXPIRED": OrderEvent.validity_elapsed,
    "UNUSED_EXPIRED": OrderEvent.validity_elapsed,
}


def _effect(outcome: TransitionOutcome | None) -> NotificationEffect:
    if outcome is not None and outcome.applied:
        return NotificationEffect.applied
    return NotificationEffect.ignored


async def find_order_by_profile(
    db: AsyncSession,
    iccid: str | None = None,
    transaction_ref: str | None = None,
) -> Order | None:
    """The base order owning a profile. Top-ups share the ICCID and are never returned."""
    if transaction_ref:
        q = await db.execute(
            select(Order).where(Order.transaction_ref == transaction_ref, Order.is_topup == False).limit(1)
        )
        order = q.scalar_one_or_none()
        if order is not None:
            return order
    if iccid:
        q = await db.execute(
            select(Order)
            .where(Order.iccid == iccid, Order.is_topup == False)
            .order_by(Order.created_at.desc())
            .limit(1)
        )
        return q.scalar_one_or_none()
    return None


# --- payments ---

async def handle_payment_event(
    db: AsyncSession,
    transitions: OrderTransitions,
    client: ProvisioningClient,
    event: dict[str, Any],
) -> NotificationEffect:
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "charge.refunded":
        # refunds are admin actions; the processor's copy is kept for audit only
        logger.info("processor refund recorded charge=%s", obj.get("id"))
        return NotificationEffect.ignored
    if event_type != "checkout.session.completed":
        return NotificationEffect.ignored

    order_id = checkout_order_id(obj)
    order = await db.get(Order, order_id) if order_id else None
    if order is None:
        logger.warning("payment for unknown order order_id=%s session=%s", order_id, obj.get("id"))
        return NotificationEffect.ignored

    outcome = await transitions.apply(order, OrderEvent.payment_captured, **checkout_facts(obj))
    if not outcome.applied:
        return NotificationEffect.ignored
    await provision_order(db, transitions, order, client)
    return NotificationEffect.applied


# --- provisioning partner ---

async def _on_order_status(db, transitions, client, content: dict[str, Any]) -> NotificationEffect:
    if content.get("orderStatus") != "GOT_RESOURCE":
        return NotificationEffect.ignored
    ref = content.get("orderNo")
    order = None
    if ref:
        q = await db.execute(select(Order).where(Order.partner_order_ref == str(ref)).limit(1))
        order = q.scalar_one_or_none()
    if order is None:
        logger.warning("ORDER_STATUS for unknown partner order orderNo=%s", ref)
        return NotificationEffect.ignored
    result = await recover_provisioning_order(transitions, order, client)
    return NotificationEffect.applied if result == RecoveryResult.completed else NotificationEffect.ignored


async def _on_smdp_event(db, transitions, content: dict[str, Any]) -> NotificationEffect:
    if content.get("smdpStatus") != "ENABLED":
        logger.info("SMDP event %s iccid=%s", content.get("smdpStatus"), content.get("iccid"))
        return NotificationEffect.ignored
    order = await find_order_by_profile(db, iccid=content.get("iccid"), transaction_ref=content.get("esimTranNo"))
    if order is None:
        return NotificationEffect.ignored
    return _effect(await transitions.apply(order, OrderEvent.profile_activated))


async def _on_esim_status(db, transitions, content: dict[str, Any]) -> NotificationEffect:
    status = str(content.get("esimStatus") or "")
    event = _ESIM_STATUS_EVENTS.get(status)
    if event is None:
        # CANCEL / REVOKED are operator matters
        logger.warning("profile status %s iccid=%s", status, content.get("iccid"))
        return NotificationEffect.ignored
    order = await find_order_by_profile(db, iccid=content.get("iccid"), transaction_ref=content.get("esimTranNo"))
    if order is None:
        return NotificationEffect.ignored
    return _effect(await transitions.apply(order, event))


async def _on_data_usage(db, transitions, content: dict[str, Any], notification_id: str) -> NotificationEffect:
    order = await find_order_by_profile(db, iccid=content.get("iccid"), transaction_ref=content.get("esimTranNo"))
    if order is None:
        return NotificationEffect.ignored
    used, total = content.get("orderUsage"), content.get("totalVolume")
    if used is None or total is None:
        return NotificationEffect.ignored
    sample = UsageSample(
        transaction_ref=str(content.get("esimTranNo") or order.transaction_ref or ""),
        bytes_used=int(used),
        bytes_total=int(total),
        sampled_at=parse_partner_time(content.get("lastUpdateTime")) or utcnow(),
    )
    outcome = await apply_usage_sample(transitions, order, sample)
    if outcome is None or not outcome.applied:
        return NotificationEffect.ignored
    await transitions.notifier.publish(
        ORDER_USAGE_ALERT,
        order,
        notification_id=notification_id,
        threshold=content.get("remainThreshold"),
        data_used_bytes=order.data_used_bytes,
        data_remaining_bytes=order.data_remaining_bytes,
    )
    return NotificationEffect.applied


async def _on_validity_usage(db, transitions, content: dict[str, Any], notification_id: str) -> NotificationEffect:
    order = await find_order_by_profile(db, iccid=content.get("iccid"), transaction_ref=content.get("esimTranNo"))
    if order is None or order.is_test_account:
        return NotificationEffect.ignored
    expires = parse_partner_time(content.get("expiredTime"))
    await transitions.notifier.publish(
        ORDER_VALIDITY_WARNING,
        order,
        notification_id=notification_id,
        days_remaining=content.get("remain"),
        expires_at=expires.isoformat() if expires else None,
    )
    return NotificationEffect.applied


async def handle_partner_notification(
    db: AsyncSession,
    transitions: OrderTransitions,
    client: ProvisioningClient,
    payload: dict[str, Any],
    notification_id: str,
) -> NotificationEffect:
    notify_type = str(payload.get("notifyType") or "")
    content = payload.get("content") or {}
    if not isinstance(content, dict):
        return NotificationEffect.ignored

    if notify_type == "ORDER_STATUS":
        return await _on_order_status(db, transitions, client, content)
    if notify_type == "SMDP_EVENT":
        return await _on_smdp_event(db, transitions, content)
    if notify_type == "ESIM_STATUS":
        return await _on_esim_status(db, transitions, content)
    if notify_type == "DATA_USAGE":
        return await _on_data_usage(db, transitions, content, notification_id)
    if notify_type == "VALIDITY_USAGE":
        return await _on_validity_usage(db, transitions, content, notification_id)
    logger.warning("unknown partner notification type=%s", notify_type)
    return NotificationEffect.ignored
