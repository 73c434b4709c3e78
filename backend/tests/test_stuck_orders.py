import asyncio
from datetime import timedelta

from app.core.db import AsyncSessionLocal
from app.models.order import Order, OrderStatus
from app.services.adapters.base import PartnerRejected, PartnerTimeout
from app.services.downstream import ORDER_COMPLETED
from app.services.recovery import TIMED_OUT_REASON
from app.tasks.stuck_orders import recover_stuck
from factories import NOW, FakePartner, RecordingNotifier, issued_order, make_customer, make_order, make_plan


async def _provisioning_order(**fields):
    async with AsyncSessionLocal() as db:
        c = await make_customer(db)
        p = await make_plan(db)
        fields.setdefault("partner_order_ref", "B2603010001")
        o = await make_order(db, c, p, status=OrderStatus.provisioning, **fields)
        return o.id


async def _run(partner, notifier=None, now=NOW):
    async with AsyncSessionLocal() as db:
        return await recover_stuck(db, partner, notifier or RecordingNotifier(), now=now)


async def _load(order_id):
    async with AsyncSessionLocal() as db:
        return await db.get(Order, order_id)


def test_complete_activation_string_completes_order():
    partner = FakePartner()
    partner.status_result = issued_order("B2603010001", "1$smdp.example.com$ABC123")
    notifier = RecordingNotifier()

    async def scenario():
        oid = await _provisioning_order(status_changed_at=NOW - timedelta(minutes=10))
        stats = await _run(partner, notifier)
        return stats, await _load(oid)

    stats, order = asyncio.run(scenario())
    assert order.status == OrderStatus.completed
    assert order.smdp_address == "smdp.example.com"
    assert order.activation_code == "ABC123"
    assert order.iccid == "8901000000000000001"
    assert order.transaction_ref == "TR-1"
    assert stats.transitioned == 1
    assert notifier.topics() == [ORDER_COMPLETED]


def test_incomplete_activation_string_stays_provisioning():
    partner = FakePartner()
    partner.status_result = issued_order("B2603010001", "1$smdp.example.com")

    async def scenario():
        oid = await _provisioning_order()
        stats = await _run(partner)
        return stats, await _load(oid)

    stats, order = asyncio.run(scenario())
    assert order.status == OrderStatus.provisioning
    assert order.smdp_address is None
    assert stats.unchanged == 1


def test_orders_inside_grace_window_are_not_polled():
    partner = FakePartner()
    partner.status_result = issued_order("B2603010001", "1$smdp.example.com$ABC123")

    async def scenario():
        oid = await _provisioning_order(status_changed_at=NOW - timedelta(minutes=2))
        await _run(partner)
        return await _load(oid)

    order = asyncio.run(scenario())
    assert order.status == OrderStatus.provisioning
    assert partner.calls == []


def test_partner_rejection_fails_order():
    partner = FakePartner()
    partner.status_error = PartnerRejected("310241 - order not found", code="310241")

    async def scenario():
        oid = await _provisioning_order()
        await _run(partner)
        return await _load(oid)

    order = asyncio.run(scenario())
    assert order.status == OrderStatus.failed
    assert "310241" in order.failure_reason


def test_give_up_after_deadline():
    partner = FakePartner()
    partner.status_error = PartnerTimeout("no answer")

    async def scenario():
        fresh = await _provisioning_order()
        old = await _provisioning_order(status_changed_at=NOW - timedelta(hours=49), partner_order_ref="B-OLD")
        await _run(partner)
        return await _load(fresh), await _load(old)

    fresh, old = asyncio.run(scenario())
    assert fresh.status == OrderStatus.provisioning
    assert old.status == OrderStatus.failed
    assert old.failure_reason == TIMED_OUT_REASON


def test_paid_order_without_partner_ref_is_resubmitted_with_same_reference():
    partner = FakePartner()
    partner.create_result = issued_order("B-NEW", "LPA:1$smdp.example.com$XYZ")

    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            o = await make_order(db, c, p, status=OrderStatus.paid)
            oid = o.id
        await _run(partner)
        return oid, await _load(oid)

    oid, order = asyncio.run(scenario())
    assert partner.calls_named("create_order")[0][2] == oid
    assert order.status == OrderStatus.completed
    assert order.partner_order_ref == "B-NEW"
    assert order.activation_code == "XYZ"


def test_test_account_orders_are_never_polled():
    partner = FakePartner()

    async def scenario():
        async with AsyncSessionLocal() as db:
            tester = await make_customer(db, is_test_account=True)
            p = await make_plan(db)
            await make_order(db, tester, p, status=OrderStatus.provisioning, partner_order_ref="SIM-1")
            await make_order(db, tester, p, status=OrderStatus.paid)
        return await _run(partner)

    stats = asyncio.run(scenario())
    assert stats.scanned_orders == 0
    assert partner.calls == []
