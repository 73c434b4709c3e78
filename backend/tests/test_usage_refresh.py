import asyncio
from datetime import timedelta

from app.core.db import AsyncSessionLocal
from app.models.common import as_utc
from app.models.order import Order, OrderStatus
from app.services.adapters.base import PartnerTimeout, UsageSample
from app.services.transitions import OrderTransitions
from app.services.usage_sync import apply_usage_sample
from app.tasks.usage import sync_usage
from factories import NOW, FakePartner, RecordingNotifier, make_customer, make_order, make_plan

GB = 1_000_000_000


def _sample(ref, used, total=GB, at=NOW):
    return UsageSample(transaction_ref=ref, bytes_used=used, bytes_total=total, sampled_at=at)


async def _metered_order(db, customer, plan, ref, status=OrderStatus.active, **fields):
    return await make_order(db, customer, plan, status=status, transaction_ref=ref, iccid=f"89{ref}", **fields)


def test_refresh_depletes_and_records_usage():
    partner = FakePartner()
    partner.usage["TR-A"] = _sample("TR-A", 999_600_000)
    partner.usage["TR-B"] = _sample("TR-B", 500_000_000)

    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            a = await _metered_order(db, c, p, "TR-A")
            b = await _metered_order(db, c, p, "TR-B")
            ids = a.id, b.id
        async with AsyncSessionLocal() as db:
            stats = await sync_usage(db, partner, RecordingNotifier())
            a, b = [await db.get(Order, i) for i in ids]
        return stats, a, b

    stats, a, b = asyncio.run(scenario())
    assert a.status == OrderStatus.depleted
    assert a.data_remaining_bytes == 0
    assert a.data_used_bytes == 999_600_000
    assert b.status == OrderStatus.active
    assert b.data_remaining_bytes == 500_000_000
    assert as_utc(b.last_usage_update) == NOW
    assert stats.transitioned == 1 and stats.unchanged == 1


def test_refresh_chunks_to_partner_batch_size_and_survives_failures():
    partner = FakePartner()
    refs = [f"TR-{i:02d}" for i in range(23)]
    for r in refs:
        partner.usage[r] = _sample(r, 100)

    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            for r in refs:
                await _metered_order(db, c, p, r)
        async with AsyncSessionLocal() as db:
            return await sync_usage(db, partner, RecordingNotifier())

    stats = asyncio.run(scenario())
    sizes = [len(c[1]) for c in partner.calls_named("get_usage")]
    assert sorted(sizes, reverse=True) == [10, 10, 3]
    assert stats.scanned_orders == 23

    failing = FakePartner()
    failing.usage_error = PartnerTimeout("busy")

    async def again():
        async with AsyncSessionLocal() as db:
            return await sync_usage(db, failing, RecordingNotifier())

    stats = asyncio.run(again())
    assert stats.remote_failures == 3
    assert stats.errors == 0


def test_missing_sample_is_skipped_and_test_orders_excluded():
    partner = FakePartner()

    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            tester = await make_customer(db, is_test_account=True)
            p = await make_plan(db)
            await _metered_order(db, c, p, "TR-GONE")
            await _metered_order(db, tester, p, "TR-SIM")
        async with AsyncSessionLocal() as db:
            return await sync_usage(db, partner, RecordingNotifier())

    stats = asyncio.run(scenario())
    assert stats.scanned_orders == 1
    assert stats.skipped == 1
    assert partner.calls_named("get_usage") == [("get_usage", ["TR-GONE"])]


def test_stale_sample_is_discarded():
    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            o = await _metered_order(
                db, c, p, "TR-S", data_used_bytes=400_000_000, data_remaining_bytes=600_000_000, last_usage_update=NOW
            )
            t = OrderTransitions(db, RecordingNotifier())
            out = await apply_usage_sample(t, o, _sample("TR-S", 999_900_000, at=NOW - timedelta(minutes=30)))
            return out, o

    out, o = asyncio.run(scenario())
    assert out is None
    assert o.status == OrderStatus.active
    assert o.data_used_bytes == 400_000_000


def test_topped_up_depleted_order_is_restored():
    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            o = await _metered_order(db, c, p, "TR-R", status=OrderStatus.depleted, data_remaining_bytes=0)
            t = OrderTransitions(db, RecordingNotifier())
            # partner total now includes the top-up capacity
            out = await apply_usage_sample(t, o, _sample("TR-R", GB, total=2 * GB))
            return out, o

    out, o = asyncio.run(scenario())
    assert out.changed_status
    assert o.status == OrderStatus.active
    assert o.data_remaining_bytes == GB
