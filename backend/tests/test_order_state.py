import pytest

from app.models.order import OrderStatus
from app.services.order_state import (
    IllegalTransition,
    OrderEvent,
    TERMINAL_STATUSES,
    allowed_events,
    can_apply,
    next_status,
)


def test_happy_path_edges():
    s = OrderStatus.pending
    for event, expected in [
        (OrderEvent.payment_captured, OrderStatus.paid),
        (OrderEvent.provisioning_accepted, OrderStatus.provisioning),
        (OrderEvent.provisioning_completed, OrderStatus.completed),
        (OrderEvent.profile_activated, OrderStatus.active),
        (OrderEvent.usage_depleted, OrderStatus.depleted),
        (OrderEvent.usage_restored, OrderStatus.active),
        (OrderEvent.validity_elapsed, OrderStatus.expired),
    ]:
        s = next_status(s, event)
        assert s == expected


@pytest.mark.parametrize("status", [OrderStatus.paid, OrderStatus.provisioning])
def test_provisioning_can_fail_from_paid_or_provisioning(status):
    assert next_status(status, OrderEvent.provisioning_failed) == OrderStatus.failed


@pytest.mark.parametrize("status", [OrderStatus.active, OrderStatus.completed, OrderStatus.provisioning])
def test_validity_elapsed_sources(status):
    assert next_status(status, OrderEvent.validity_elapsed) == OrderStatus.expired


def test_refund_allowed_from_every_non_terminal_state():
    for status in OrderStatus:
        if status in TERMINAL_STATUSES:
            continue
        assert next_status(status, OrderEvent.refund) == OrderStatus.refunded


def test_refunded_is_terminal():
    assert allowed_events(OrderStatus.refunded) == []
    with pytest.raises(IllegalTransition):
        next_status(OrderStatus.refunded, OrderEvent.provisioning_completed)


def test_illegal_event_message_names_event_and_state():
    with pytest.raises(IllegalTransition) as exc:
        next_status(OrderStatus.pending, OrderEvent.profile_activated)
    assert "profile_activated" in str(exc.value)
    assert "pending" in str(exc.value)
    assert exc.value.current == OrderStatus.pending


def test_depleted_cannot_be_reactivated_by_install_signal():
    assert not can_apply(OrderStatus.depleted, OrderEvent.profile_activated)
    assert can_apply(OrderStatus.depleted, OrderEvent.usage_restored)
    assert not can_apply(OrderStatus.expired, OrderEvent.usage_restored)
