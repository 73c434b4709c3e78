from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import Order, OrderStatus
from app.models.plan import Plan
from app.models.user import Customer
from app.services.order_state import IllegalTransition, OrderEvent, can_apply
from app.services.payments import refund_payment
from app.services.transitions import OrderTransitions, TransitionOutcome

logger = logging.getLogger(__name__)

# a top-up adds capacity to a profile that is still usable
TOPUP_PARENT_STATUSES = (OrderStatus.completed, OrderStatus.active, OrderStatus.depleted)


class OrderRequestError(Exception):
    """Order creation request that cannot be honored (unknown user/plan, bad parent)."""


async def create_order(
    db: AsyncSession,
    user_id: str,
    plan_id: str,
    parent_order_id: str | None = None,
) -> Order:
    """Create a ``pending`` order. Payment capture moves it on from there."""
    user = await db.get(Customer, user_id)
    if user is None:
        raise OrderRequestError("unknown user")
    plan = await db.get(Plan, plan_id)
    if plan is None or not plan.is_active:
        raise OrderRequestError("unknown or inactive plan")

    if parent_order_id:
        parent = await db.get(Order, parent_order_id)
        if parent is None or parent.user_id != user.id or parent.is_topup:
            raise OrderRequestError("top-up parent not found")
        if parent.status not in TOPUP_PARENT_STATUSES:
            raise OrderRequestError(f"cannot top up an order in status {parent.status.value}")

    order = Order(
        user_id=user.id,
        plan_id=plan.id,
        status=OrderStatus.pending,
        is_topup=bool(parent_order_id),
        parent_order_id=parent_order_id,
        is_test_account=bool(user.is_test_account),
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)
    logger.info("order created order_id=%s user_id=%s plan_id=%s topup=%s", order.id, user.id, plan.id, order.is_topup)
    return order


async def refund_order(transitions: OrderTransitions, order: Order, reason: str | None = None) -> TransitionOutcome:
    """Admin refund: return the money at the processor, then mark the order refunded.

    Raises IllegalTransition for an already refunded order (before any money
    moves) and PaymentError when the processor refuses.
    """
    if not can_apply(order.status, OrderEvent.refund):
        raise IllegalTransition(order.status, OrderEvent.refund)

    changes = {"refund_reason": (reason or "").strip()[:255] or None}
    # test accounts never paid anything real
    if order.processor_ref and not order.is_test_account:
        changes["processor_refund_ref"] = await refund_payment(order.processor_ref, order.id, reason)

    outcome = await transitions.apply(order, OrderEvent.refund, **changes)
    logger.info(
        "refund order_id=%s applied=%s from=%s processor_refund=%s reason=%s",
        order.id,
        outcome.applied,
        outcome.from_status.value,
        changes.get("processor_refund_ref") or "-",
        (reason or "-")[:120],
    )
    return outcome
