from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.order import Order, OrderStatus
from app.services.downstream import (
    ORDER_COMPLETED,
    ORDER_PAID,
    ORDER_REFUNDED,
    DownstreamNotifier,
    HttpDownstreamNotifier,
)
from app.services.order_state import IllegalTransition, OrderEvent, StoreConflict, next_status

logger = logging.getLogger(__name__)

# Fields a transition may write. Everything else on an order is owned by
# order creation or by external ledgers.
WRITABLE_FIELDS = frozenset({
    "failure_reason",
    "processor_ref",
    "amount_cents",
    "currency",
    "paid_at",
    "partner_order_ref",
    "iccid",
    "transaction_ref",
    "smdp_address",
    "activation_code",
    "install_url",
    "data_used_bytes",
    "data_remaining_bytes",
    "last_usage_update",
    "refund_reason",
    "processor_refund_ref",
})

# a profile is issued once; a payment is captured once
SET_ONCE_FIELDS = ("iccid", "smdp_address", "activation_code", "install_url", "paid_at")

_SIDE_EFFECTS = {
    OrderStatus.paid: ORDER_PAID,
    OrderStatus.completed: ORDER_COMPLETED,
    OrderStatus.refunded: ORDER_REFUNDED,
}


@dataclass
class TransitionOutcome:
    order_id: str
    event: OrderEvent | None
    from_status: OrderStatus
    to_status: OrderStatus
    applied: bool

    @property
    def changed_status(self) -> bool:
        return self.applied and self.from_status != self.to_status


class OrderTransitions:
    """The single write path for orders.

    Each call is one compare-and-swap UPDATE guarded on the status the caller
    observed, committed on its own. A concurrent writer that got there first
    turns the call into a no-op.
    """

    def __init__(self, db: AsyncSession, notifier: DownstreamNotifier | None = None):
        self.db = db
        self.notifier = notifier or HttpDownstreamNotifier()

    def _check_set_once(self, order: Order, event: OrderEvent | None, changes: dict[str, Any]) -> None:
        for field in SET_ONCE_FIELDS:
            if field not in changes:
                continue
            existing = getattr(order, field)
            if existing is None:
                continue
            if existing == changes[field]:
                changes.pop(field)
                continue
            raise IllegalTransition(order.status, event, f"{field} already set")

    def _build_values(self, order: Order, event: OrderEvent | None, changes: dict[str, Any], now: datetime) -> dict[str, Any]:
        unknown = set(changes) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"not writable through transitions: {sorted(unknown)}")

        current = order.status
        target = next_status(current, event) if event is not None else current
        values = dict(changes)
        self._check_set_once(order, event, values)

        if event == OrderEvent.provisioning_completed and not order.is_topup:
            smdp = values.get("smdp_address") or order.smdp_address
            code = values.get("activation_code") or order.activation_code
            if not (smdp and code):
                raise IllegalTransition(current, event, "activation details incomplete")

        if "data_used_bytes" in values and values["data_used_bytes"] is not None:
            values["data_used_bytes"] = max(0, int(values["data_used_bytes"]))
        if "data_remaining_bytes" in values and values["data_remaining_bytes"] is not None:
            values["data_remaining_bytes"] = max(0, int(values["data_remaining_bytes"]))

        if event == OrderEvent.payment_captured and order.paid_at is None and "paid_at" not in values:
            values["paid_at"] = now
        if target == OrderStatus.active and order.activated_at is None:
            values["activated_at"] = now
        if target == OrderStatus.refunded:
            values["refunded_at"] = now

        if target != current:
            values["status"] = target
            values["status_changed_at"] = now
        values["updated_at"] = now
        return values

    async def _compare_and_swap(self, order: Order, expected: OrderStatus, values: dict[str, Any]) -> None:
        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            raise StoreConflict(order.id)

    async def apply(
        self,
        order: Order,
        event: OrderEvent | None,
        *,
        now: datetime | None = None,
        **changes: Any,
    ) -> TransitionOutcome:
        """Move ``order`` along ``event`` (or only write ``changes`` when event is None).

        Raises IllegalTransition when the event has no edge from the current
        status; the order is left untouched.
        """
        now = now or utcnow()
        current = order.status
        values = self._build_values(order, event, changes, now)
        target = values.get("status", current)

        try:
            await self._compare_and_swap(order, current, values)
        except StoreConflict:
            # nothing was written; end the transaction and reload what the winner stored
            await self.db.commit()
            await self.db.refresh(order)
            logger.info(
                "transition no-op order_id=%s event=%s expected=%s found=%s",
                order.id,
                event.value if event else "update",
                current.value,
                order.status.value,
            )
            return TransitionOutcome(order.id, event, current, target, applied=False)

        await self.db.commit()
        await self.db.refresh(order)
        outcome = TransitionOutcome(order.id, event, current, target, applied=True)
        if outcome.changed_status:
            logger.info("order %s %s -> %s (%s)", order.id, current.value, target.value, event.value)
            topic = _SIDE_EFFECTS.get(target)
            if topic:
                await self.notifier.publish(topic, order)
        return outcome

    async def try_apply(self, order: Order, event: OrderEvent | None, **kwargs: Any) -> TransitionOutcome | None:
        """Like apply(), but an illegal event is logged and discarded."""
        try:
            return await self.apply(order, event, **kwargs)
        except IllegalTransition as e:
            logger.warning("discarded event order_id=%s: %s", order.id, e)
            return None
