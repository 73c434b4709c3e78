import asyncio

import pytest
from sqlalchemy import select

from app.core.db import AsyncSessionLocal
from app.models.idempotency import IdempotencyRecord, NotificationEffect, NotificationSource
from app.models.order import OrderStatus
from app.services.downstream import ORDER_PAID
from app.services.idempotency import Admission, admit, run_once
from app.services.order_state import IllegalTransition, OrderEvent
from app.services.transitions import OrderTransitions
from factories import RecordingNotifier, make_customer, make_order, make_plan


def test_second_admission_is_duplicate():
    async def scenario():
        async with AsyncSessionLocal() as db:
            first = await admit(db, NotificationSource.payments, "evt_1", "checkout.session.completed")
            second = await admit(db, NotificationSource.payments, "evt_1", "checkout.session.completed")
            other_source = await admit(db, NotificationSource.esim_access, "evt_1", "ORDER_STATUS")
            return first, second, other_source

    assert asyncio.run(scenario()) == (Admission.accepted, Admission.duplicate, Admission.accepted)


def test_long_sender_ids_are_deduplicated_in_full():
    long_id = "n-" + "x" * 300

    async def scenario():
        async with AsyncSessionLocal() as db:
            first = await admit(db, NotificationSource.esim_access, long_id, "DATA_USAGE")
            second = await admit(db, NotificationSource.esim_access, long_id, "DATA_USAGE")
            sibling = await admit(db, NotificationSource.esim_access, long_id[:-1] + "y", "DATA_USAGE")
            stored = (await db.execute(select(IdempotencyRecord.notification_id))).scalars().all()
            return (first, second, sibling), stored

    admissions, stored = asyncio.run(scenario())
    assert admissions == (Admission.accepted, Admission.duplicate, Admission.accepted)
    assert long_id in stored


def test_same_notification_twice_has_one_side_effect():
    notifier = RecordingNotifier()
    calls = []

    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            o = await make_order(db, c, p)
            t = OrderTransitions(db, notifier)

            async def handler():
                calls.append(1)
                await t.apply(o, OrderEvent.payment_captured)
                return NotificationEffect.applied

            results = []
            for _ in range(2):
                results.append(await run_once(db, NotificationSource.payments, "evt_42", "checkout.session.completed", handler))

            # the duplicate insert rolled back and expired loaded rows
            await db.refresh(o)
            q = await db.execute(select(IdempotencyRecord))
            rows = q.scalars().all()
            return results, rows, o.status

    results, rows, status = asyncio.run(scenario())
    assert results[0] == (Admission.accepted, NotificationEffect.applied)
    assert results[1] == (Admission.duplicate, None)
    assert len(calls) == 1
    assert len(rows) == 1 and rows[0].effect == NotificationEffect.applied
    assert status == OrderStatus.paid
    assert notifier.topics() == [ORDER_PAID]


def test_illegal_transition_is_recorded_not_raised():
    async def scenario():
        async with AsyncSessionLocal() as db:
            async def handler():
                raise IllegalTransition(OrderStatus.refunded, OrderEvent.provisioning_completed)

            result = await run_once(db, NotificationSource.esim_access, "n-1", "ORDER_STATUS", handler)
            q = await db.execute(select(IdempotencyRecord))
            return result, q.scalar_one()

    result, row = asyncio.run(scenario())
    assert result == (Admission.accepted, NotificationEffect.illegal_transition)
    assert row.effect == NotificationEffect.illegal_transition
    assert "refunded" in row.detail


def test_handler_crash_is_recorded_and_retry_is_duplicate():
    async def scenario():
        async with AsyncSessionLocal() as db:
            async def boom():
                raise RuntimeError("db went away")

            with pytest.raises(RuntimeError):
                await run_once(db, NotificationSource.payments, "evt_9", "checkout.session.completed", boom)
            retry = await run_once(db, NotificationSource.payments, "evt_9", "checkout.session.completed", boom)
            q = await db.execute(select(IdempotencyRecord))
            return retry, q.scalar_one()

    retry, row = asyncio.run(scenario())
    assert retry == (Admission.duplicate, None)
    assert row.effect == NotificationEffect.error
