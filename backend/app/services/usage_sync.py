from __future__ import annotations

import logging

from app.models.common import as_utc
from app.models.order import Order, OrderStatus
from app.services.adapters.base import UsageSample
from app.services.transitions import OrderTransitions, TransitionOutcome
from app.services.usage_policy import evaluate

logger = logging.getLogger(__name__)

# statuses whose usage counters are kept current
USAGE_STATUSES = (OrderStatus.completed, OrderStatus.active, OrderStatus.depleted)


def is_stale(order: Order, sample: UsageSample) -> bool:
    last = as_utc(order.last_usage_update)
    return last is not None and as_utc(sample.sampled_at) < last


async def apply_usage_sample(
    transitions: OrderTransitions,
    order: Order,
    sample: UsageSample,
) -> TransitionOutcome | None:
    """Store a usage sample and let the usage policy move active <-> depleted.

    Returns None when the sample was not applied (status out of scope, or a
    sample older than the one already stored).
    """
    if order.status not in USAGE_STATUSES:
        return None
    if is_stale(order, sample):
        logger.info(
            "stale usage sample discarded order_id=%s sampled_at=%s last=%s",
            order.id,
            sample.sampled_at.isoformat(),
            order.last_usage_update,
        )
        return None

    decision = evaluate(order.status, sample.bytes_used, sample.bytes_total, order.bonus_bytes_pending)
    return await transitions.apply(
        order,
        decision.event,
        data_used_bytes=decision.bytes_used,
        data_remaining_bytes=decision.bytes_remaining,
        last_usage_update=sample.sampled_at,
    )
