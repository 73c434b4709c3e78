from __future__ import annotations
from enum import Enum
from app.models.order import OrderStatus


class OrderEvent(str, Enum):
    payment_captured = "payment_captured"
    provisioning_accepted = "provisioning_accepted"
    provisioning_completed = "provisioning_completed"
    provisioning_failed = "provisioning_failed"
    profile_activated = "profile_activated"
    usage_depleted = "usage_depleted"
    usage_restored = "usage_restored"
    validity_elapsed = "validity_elapsed"
    refund = "refund"


class IllegalTransition(Exception):
    """Event names a transition that does not exist from the order's current state."""

    def __init__(self, current: OrderStatus, event: OrderEvent | None, detail: str | None = None):
        self.current = current
        self.event = event
        msg = f"{event.value if event else 'update'} not allowed from {current.value}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class StoreConflict(Exception):
    """The order's status changed underneath a guarded write."""


TERMINAL_STATUSES = frozenset({OrderStatus.refunded})

# event -> (allowed source states, target state)
_EDGES: dict[OrderEvent, tuple[frozenset[OrderStatus], OrderStatus]] = {
    OrderEvent.payment_captured: (frozenset({OrderStatus.pending}), OrderStatus.paid),
    OrderEvent.provisioning_accepted: (frozenset({OrderStatus.paid}), OrderStatus.provisioning),
    OrderEvent.provisioning_completed: (frozenset({OrderStatus.provisioning}), OrderStatus.completed),
    OrderEvent.provisioning_failed: (
        frozenset({OrderStatus.paid, OrderStatus.provisioning}),
        OrderStatus.failed,
    ),
    OrderEvent.profile_activated: (frozenset({OrderStatus.completed}), OrderStatus.active),
    OrderEvent.usage_depleted: (frozenset({OrderStatus.active}), OrderStatus.depleted),
    OrderEvent.usage_restored: (frozenset({OrderStatus.depleted}), OrderStatus.active),
    OrderEvent.validity_elapsed: (
        frozenset({OrderStatus.active, OrderStatus.completed, OrderStatus.provisioning}),
        OrderStatus.expired,
    ),
    OrderEvent.refund: (frozenset(OrderStatus) - TERMINAL_STATUSES, OrderStatus.refunded),
}


def next_status(current: OrderStatus, event: OrderEvent) -> OrderStatus:
    sources, target = _EDGES[event]
    if current not in sources:
        raise IllegalTransition(current, event)
    return target


def can_apply(current: OrderStatus, event: OrderEvent) -> bool:
    return current in _EDGES[event][0]


def allowed_events(current: OrderStatus) -> list[OrderEvent]:
    return [e for e, (sources, _) in _EDGES.items() if current in sources]
