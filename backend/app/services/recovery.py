from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.common import as_utc, utcnow
from app.models.order import Order, OrderStatus
from app.services.adapters.base import (
    IncompleteActivationDetails,
    PartnerRejected,
    PartnerTimeout,
    ProvisioningClient,
)
from app.services.order_state import OrderEvent
from app.services.provisioning import complete_from_partner, provision_order
from app.services.transitions import OrderTransitions

logger = logging.getLogger(__name__)

TIMED_OUT_REASON = "provisioning timed out"


class RecoveryResult(str, enum.Enum):
    completed = "completed"
    pending = "pending"
    failed = "failed"
    skipped = "skipped"


def give_up_deadline(order: Order) -> datetime | None:
    started = as_utc(order.status_changed_at or order.created_at)
    if started is None:
        return None
    return started + timedelta(hours=settings.PROVISIONING_GIVE_UP_HOURS)


async def _pending_or_give_up(transitions: OrderTransitions, order: Order, now: datetime) -> RecoveryResult:
    deadline = give_up_deadline(order)
    if deadline is not None and now >= deadline:
        outcome = await transitions.try_apply(order, OrderEvent.provisioning_failed, failure_reason=TIMED_OUT_REASON)
        if outcome is not None and outcome.applied:
            return RecoveryResult.failed
    return RecoveryResult.pending


async def recover_provisioning_order(
    transitions: OrderTransitions,
    order: Order,
    client: ProvisioningClient,
    now: datetime | None = None,
) -> RecoveryResult:
    """Poll the partner for an order the notification flow has not completed."""
    now = now or utcnow()
    if order.status != OrderStatus.provisioning or not order.partner_order_ref or order.is_test_account:
        return RecoveryResult.skipped

    try:
        partner = await client.get_order_status(order.partner_order_ref)
    except PartnerTimeout as e:
        logger.warning("recovery poll deferred order_id=%s err=%s", order.id, str(e)[:220])
        return await _pending_or_give_up(transitions, order, now)
    except PartnerRejected as e:
        logger.warning("recovery poll rejected order_id=%s code=%s err=%s", order.id, e.code, str(e)[:220])
        outcome = await transitions.try_apply(order, OrderEvent.provisioning_failed, failure_reason=str(e)[:255])
        return RecoveryResult.failed if outcome and outcome.applied else RecoveryResult.skipped

    try:
        outcome = await complete_from_partner(transitions, order, partner)
    except IncompleteActivationDetails as e:
        logger.info("order %s still incomplete: %s", order.id, e)
        return await _pending_or_give_up(transitions, order, now)
    return RecoveryResult.completed if outcome.applied else RecoveryResult.skipped


async def resubmit_paid_order(
    db: AsyncSession,
    transitions: OrderTransitions,
    order: Order,
    client: ProvisioningClient,
) -> RecoveryResult:
    """Retry submission of an order that was paid but never accepted by the partner."""
    if order.status != OrderStatus.paid or order.partner_order_ref or order.is_test_account:
        return RecoveryResult.skipped
    outcome = await provision_order(db, transitions, order, client)
    if outcome is None:
        return RecoveryResult.pending
    if order.status == OrderStatus.completed:
        return RecoveryResult.completed
    if order.status == OrderStatus.failed:
        return RecoveryResult.failed
    return RecoveryResult.pending
