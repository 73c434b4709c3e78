"""Simulated order lifecycle for designated test (app-review/demo) accounts.

Everything here is computed from ``(created_at, data_gb, validity_days, now)``
and never written back as if the partner had reported it. The only writes are
the simulated provisioning transitions, and each of them re-reads the
authoritative flag on ``users`` right before it runs.

Timeline, compressed for reviewers:
  - activation one minute after the order was created
  - usage accrues at 20% of capacity per hour, capped at the plan total
  - one real hour stands in for one validity day
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import as_utc, utcnow
from app.models.order import Order, OrderStatus
from app.models.plan import BYTES_PER_GB, Plan
from app.models.user import Customer
from app.services.order_state import OrderEvent
from app.services.transitions import OrderTransitions, TransitionOutcome
from app.services.usage_policy import remaining_bytes

logger = logging.getLogger(__name__)

ACTIVATION_DELAY = timedelta(minutes=1)
USAGE_FRACTION_PER_HOUR = 0.20
SIMULATED_DAY = timedelta(hours=1)

SIMULATED_SMDP = "smdp.simulated.invalid"


@dataclass(frozen=True)
class SimulatedUsage:
    status: OrderStatus
    activated_at: datetime | None
    expires_at: datetime | None
    bytes_used: int
    bytes_total: int
    bytes_remaining: int
    sampled_at: datetime


def simulate(created_at: datetime, data_gb: float, validity_days: int, now: datetime) -> SimulatedUsage:
    created = as_utc(created_at)
    now = as_utc(now)
    total = int(float(data_gb) * BYTES_PER_GB)

    if now < created + ACTIVATION_DELAY:
        return SimulatedUsage(
            status=OrderStatus.completed,
            activated_at=None,
            expires_at=None,
            bytes_used=0,
            bytes_total=total,
            bytes_remaining=total,
            sampled_at=now,
        )

    activated = created + ACTIVATION_DELAY
    hours = (now - activated).total_seconds() / 3600
    used = min(total, int(total * USAGE_FRACTION_PER_HOUR * hours))
    remaining = remaining_bytes(used, total)
    expires = activated + int(validity_days) * SIMULATED_DAY

    if now >= expires:
        status = OrderStatus.expired
    elif remaining == 0:
        status = OrderStatus.depleted
    else:
        status = OrderStatus.active
    return SimulatedUsage(
        status=status,
        activated_at=activated,
        expires_at=expires,
        bytes_used=used,
        bytes_total=total,
        bytes_remaining=remaining,
        sampled_at=now,
    )


async def is_test_account(db: AsyncSession, user_id: str) -> bool:
    q = await db.execute(select(Customer.is_test_account).where(Customer.id == user_id))
    return bool(q.scalar_one_or_none())


async def simulated_view(
    db: AsyncSession,
    order: Order,
    plan: Plan | None,
    now: datetime | None = None,
) -> SimulatedUsage | None:
    """Simulated usage for a test account's order, or None for everyone else."""
    if not order.is_test_account or plan is None:
        return None
    if order.status != OrderStatus.completed or not order.has_activation_details:
        return None
    if not await is_test_account(db, order.user_id):
        logger.warning("simulation refused order_id=%s: user is not a test account", order.id)
        return None
    return simulate(order.created_at, plan.data_gb, plan.validity_days, now or utcnow())


async def simulate_provisioning(
    db: AsyncSession,
    transitions: OrderTransitions,
    order: Order,
) -> TransitionOutcome | None:
    """Complete a paid test order with placeholder activation details, no partner call."""
    tag = order.id.replace("-", "")[:12].upper()

    if not await is_test_account(db, order.user_id):
        logger.error("simulated provisioning refused order_id=%s: user is not a test account", order.id)
        return None
    outcome = await transitions.try_apply(order, OrderEvent.provisioning_accepted, partner_order_ref=f"SIM-{tag}")
    if outcome is None or not outcome.applied:
        return outcome

    if not await is_test_account(db, order.user_id):
        logger.error("simulated provisioning refused order_id=%s: user is not a test account", order.id)
        return None
    return await transitions.try_apply(
        order,
        OrderEvent.provisioning_completed,
        iccid=f"8900000000{tag[:10]}",
        smdp_address=SIMULATED_SMDP,
        activation_code=f"SIM-{tag}",
    )
