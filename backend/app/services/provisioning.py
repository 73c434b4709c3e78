from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import Order, OrderStatus
from app.models.plan import Plan
from app.services.activation import parse_activation_string
from app.services.adapters.base import (
    IncompleteActivationDetails,
    PartnerOrder,
    PartnerRejected,
    PartnerTimeout,
    ProvisioningClient,
)
from app.services.order_state import OrderEvent
from app.services.simulation import simulate_provisioning
from app.services.transitions import OrderTransitions, TransitionOutcome

logger = logging.getLogger(__name__)


async def complete_from_partner(
    transitions: OrderTransitions,
    order: Order,
    partner: PartnerOrder,
) -> TransitionOutcome:
    """Record the issued profile and move the order to completed.

    Raises IncompleteActivationDetails while the partner has not issued both
    halves of the activation string yet.
    """
    if order.is_topup:
        # capacity lands on the parent's profile; nothing new to install
        return await transitions.apply(order, OrderEvent.provisioning_completed)

    profile = partner.first_profile
    if profile is None:
        raise IncompleteActivationDetails(f"partner order {partner.partner_order_id} has no profile yet")
    details = parse_activation_string(profile.activation_string)
    return await transitions.apply(
        order,
        OrderEvent.provisioning_completed,
        iccid=profile.iccid,
        transaction_ref=profile.transaction_ref,
        smdp_address=details.smdp_address,
        activation_code=details.activation_code,
        install_url=profile.install_url,
    )


async def provision_order(
    db: AsyncSession,
    transitions: OrderTransitions,
    order: Order,
    client: ProvisioningClient,
) -> TransitionOutcome | None:
    """Hand a paid order to the partner.

    A timeout leaves the order in ``paid`` for the stuck-order pass to
    re-submit under the same reference; an explicit rejection fails it.
    """
    if order.status != OrderStatus.paid:
        return None
    if order.is_test_account:
        return await simulate_provisioning(db, transitions, order)

    plan = await db.get(Plan, order.plan_id)
    if plan is None:
        return await transitions.try_apply(
            order, OrderEvent.provisioning_failed, failure_reason=f"unknown plan {order.plan_id}"
        )

    parent: Order | None = None
    if order.is_topup:
        parent = await db.get(Order, order.parent_order_id) if order.parent_order_id else None
        if parent is None or not parent.iccid:
            return await transitions.try_apply(
                order, OrderEvent.provisioning_failed, failure_reason="top-up target has no issued profile"
            )

    try:
        if parent is not None:
            partner = await client.top_up(parent.iccid, plan.sku, order.id)
        else:
            partner = await client.create_order(plan.sku, order.id)
    except PartnerTimeout as e:
        logger.warning("provisioning deferred order_id=%s err=%s", order.id, str(e)[:220])
        return None
    except PartnerRejected as e:
        logger.warning("provisioning rejected order_id=%s code=%s err=%s", order.id, e.code, str(e)[:220])
        return await transitions.try_apply(order, OrderEvent.provisioning_failed, failure_reason=str(e)[:255])

    changes = {"partner_order_ref": partner.partner_order_id}
    if parent is not None:
        changes["iccid"] = parent.iccid
    outcome = await transitions.try_apply(order, OrderEvent.provisioning_accepted, **changes)
    if outcome is None or not outcome.applied:
        return outcome

    try:
        return await complete_from_partner(transitions, order, partner)
    except IncompleteActivationDetails as e:
        # normal for asynchronous issuance; the partner notifies or recovery polls
        logger.info("order %s awaiting profile: %s", order.id, e)
        return outcome
