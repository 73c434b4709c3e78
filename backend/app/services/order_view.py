from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.common import as_utc, utcnow
from app.models.order import Order, OrderStatus
from app.models.plan import Plan
from app.schemas.orders import ActivationOut, OrderOut, UsageOut
from app.services.activation import build_activation_string
from app.services.adapters.base import MeteringClient, PartnerError, ProvisioningClient
from app.services.order_state import OrderEvent
from app.services.recovery import recover_provisioning_order
from app.services.simulation import SimulatedUsage, simulated_view
from app.services.transitions import OrderTransitions
from app.services.usage_sync import USAGE_STATUSES, apply_usage_sample

logger = logging.getLogger(__name__)

_IN_PROGRESS = (OrderStatus.pending, OrderStatus.paid, OrderStatus.provisioning)
_SHOWS_ACTIVATION = (OrderStatus.completed, OrderStatus.active, OrderStatus.depleted)


def display_status(status: OrderStatus) -> str:
    if status in _IN_PROGRESS:
        return "in_progress"
    return status.value


def _activation(order: Order) -> ActivationOut | None:
    if order.is_topup or not order.has_activation_details or order.status not in _SHOWS_ACTIVATION:
        return None
    return ActivationOut(
        lpa_string=build_activation_string(order.smdp_address, order.activation_code),
        smdp_address=order.smdp_address,
        activation_code=order.activation_code,
        install_url=order.install_url,
    )


def build_order_out(order: Order, plan: Plan | None, sim: SimulatedUsage | None = None) -> OrderOut:
    out = OrderOut(
        id=order.id,
        status=order.status.value,
        display_status=display_status(order.status),
        plan_id=order.plan_id,
        plan_name=plan.name if plan else None,
        is_topup=order.is_topup,
        parent_order_id=order.parent_order_id,
        iccid=order.iccid,
        data_total_bytes=plan.total_bytes if plan else None,
        data_used_bytes=order.data_used_bytes,
        data_remaining_bytes=order.data_remaining_bytes,
        last_usage_update=as_utc(order.last_usage_update),
        activated_at=as_utc(order.activated_at),
        failure_reason=order.failure_reason,
        activation=_activation(order),
    )
    if plan is not None and order.activated_at is not None:
        out.expires_at = as_utc(order.activated_at) + timedelta(days=int(plan.validity_days))

    if sim is not None:
        out.status = sim.status.value
        out.display_status = display_status(sim.status)
        out.data_total_bytes = sim.bytes_total
        out.data_used_bytes = sim.bytes_used
        out.data_remaining_bytes = sim.bytes_remaining
        out.last_usage_update = sim.sampled_at
        out.activated_at = sim.activated_at
        out.expires_at = sim.expires_at
        out.simulated = True
    return out


async def load_order_detail(
    db: AsyncSession,
    transitions: OrderTransitions,
    client: ProvisioningClient,
    order_id: str,
    user_id: str,
    now: datetime | None = None,
) -> OrderOut | None:
    """Order detail for its owner.

    A real order still in provisioning gets an opportunistic recovery poll,
    and a completed one may be marked active (first detail read after
    issuance) when ACTIVATE_ON_DETAIL_READ is on. Test-account orders are
    answered from the simulation and never touch the partner.
    """
    now = now or utcnow()
    order = await db.get(Order, order_id)
    if order is None or order.user_id != user_id:
        return None
    plan = await db.get(Plan, order.plan_id)

    if order.is_test_account:
        sim = await simulated_view(db, order, plan, now)
        return build_order_out(order, plan, sim)

    # activation needs a read after the details were already issued
    seen_completed = order.status == OrderStatus.completed
    if order.status == OrderStatus.provisioning and order.partner_order_ref:
        result = await recover_provisioning_order(transitions, order, client, now)
        logger.info("detail read recovery order_id=%s result=%s", order.id, result.value)

    if (
        settings.ACTIVATE_ON_DETAIL_READ
        and seen_completed
        and order.status == OrderStatus.completed
        and not order.is_topup
        and order.has_activation_details
    ):
        await transitions.try_apply(order, OrderEvent.profile_activated, now=now)

    return build_order_out(order, plan)


def _usage_out(order: Order, plan: Plan | None, refreshed: bool = False, sim: SimulatedUsage | None = None) -> UsageOut:
    if sim is not None:
        return UsageOut(
            order_id=order.id,
            status=sim.status.value,
            display_status=display_status(sim.status),
            data_total_bytes=sim.bytes_total,
            data_used_bytes=sim.bytes_used,
            data_remaining_bytes=sim.bytes_remaining,
            last_usage_update=sim.sampled_at,
            simulated=True,
        )
    return UsageOut(
        order_id=order.id,
        status=order.status.value,
        display_status=display_status(order.status),
        data_total_bytes=plan.total_bytes if plan else None,
        data_used_bytes=order.data_used_bytes,
        data_remaining_bytes=order.data_remaining_bytes,
        last_usage_update=as_utc(order.last_usage_update),
        refreshed=refreshed,
    )


async def load_order_usage(
    db: AsyncSession,
    transitions: OrderTransitions,
    client: MeteringClient,
    order_id: str,
    user_id: str,
    now: datetime | None = None,
) -> UsageOut | None:
    """Usage for one order, pulled from the partner on demand.

    A partner failure falls back to the stored counters. Test-account orders
    get the simulated figures.
    """
    order = await db.get(Order, order_id)
    if order is None or order.user_id != user_id:
        return None
    plan = await db.get(Plan, order.plan_id)

    if order.is_test_account:
        sim = await simulated_view(db, order, plan, now or utcnow())
        return _usage_out(order, plan, sim=sim)

    refreshed = False
    if order.transaction_ref and order.status in USAGE_STATUSES:
        try:
            samples = await client.get_usage([order.transaction_ref])
        except PartnerError as e:
            logger.warning("usage read fell back to stored counters order_id=%s err=%s", order.id, str(e)[:220])
        else:
            sample = next((s for s in samples if s.transaction_ref == order.transaction_ref), None)
            if sample is not None:
                refreshed = await apply_usage_sample(transitions, order, sample) is not None
    return _usage_out(order, plan, refreshed=refreshed)
