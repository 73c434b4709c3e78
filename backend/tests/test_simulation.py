import asyncio
from datetime import timedelta

from sqlalchemy import update

from app.core.db import AsyncSessionLocal
from app.models.order import OrderStatus
from app.models.plan import BYTES_PER_GB
from app.models.user import Customer
from app.services.simulation import SIMULATED_SMDP, simulate, simulate_provisioning, simulated_view
from app.services.transitions import OrderTransitions
from factories import NOW, RecordingNotifier, make_customer, make_order, make_plan


def test_simulated_timeline():
    created = NOW
    before = simulate(created, 1.0, 7, created + timedelta(seconds=30))
    assert before.status == OrderStatus.completed
    assert before.bytes_used == 0 and before.activated_at is None

    two_hours = simulate(created, 1.0, 7, created + timedelta(minutes=1, hours=2))
    assert two_hours.status == OrderStatus.active
    assert two_hours.bytes_used == int(BYTES_PER_GB * 0.4)

    capped = simulate(created, 1.0, 30, created + timedelta(hours=6))
    assert capped.bytes_used == BYTES_PER_GB
    assert capped.bytes_remaining == 0
    assert capped.status == OrderStatus.depleted

    expired = simulate(created, 1.0, 3, created + timedelta(minutes=1, hours=3))
    assert expired.status == OrderStatus.expired


def test_simulation_is_deterministic():
    at = NOW + timedelta(hours=2, minutes=17)
    assert simulate(NOW, 3.0, 15, at) == simulate(NOW, 3.0, 15, at)


def test_no_simulation_for_real_accounts():
    async def scenario():
        async with AsyncSessionLocal() as db:
            c = await make_customer(db)
            p = await make_plan(db)
            o = await make_order(
                db, c, p, status=OrderStatus.completed, smdp_address="s.example.com", activation_code="A1"
            )
            plain = await simulated_view(db, o, p, NOW)
            # a stale cached flag on the order is not enough
            o.is_test_account = True
            forged = await simulated_view(db, o, p, NOW)
            return plain, forged

    plain, forged = asyncio.run(scenario())
    assert plain is None
    assert forged is None


def test_simulated_view_for_test_account():
    async def scenario():
        async with AsyncSessionLocal() as db:
            tester = await make_customer(db, is_test_account=True)
            p = await make_plan(db, data_gb=2.0)
            o = await make_order(
                db, tester, p, status=OrderStatus.completed, smdp_address=SIMULATED_SMDP, activation_code="SIM-1"
            )
            return await simulated_view(db, o, p, NOW + timedelta(hours=1))

    sim = asyncio.run(scenario())
    assert sim is not None
    assert sim.status == OrderStatus.active
    assert sim.bytes_total == 2 * BYTES_PER_GB


def test_simulated_provisioning_completes_without_partner():
    async def scenario():
        async with AsyncSessionLocal() as db:
            tester = await make_customer(db, is_test_account=True)
            p = await make_plan(db)
            o = await make_order(db, tester, p, status=OrderStatus.paid)
            out = await simulate_provisioning(db, OrderTransitions(db, RecordingNotifier()), o)
            return out, o

    out, o = asyncio.run(scenario())
    assert out.applied
    assert o.status == OrderStatus.completed
    assert o.smdp_address == SIMULATED_SMDP
    assert o.partner_order_ref.startswith("SIM-")
    assert o.transaction_ref is None


def test_simulated_provisioning_rechecks_authoritative_flag():
    async def scenario():
        async with AsyncSessionLocal() as db:
            tester = await make_customer(db, is_test_account=True)
            p = await make_plan(db)
            o = await make_order(db, tester, p, status=OrderStatus.paid)
            # flag revoked after the order was placed
            await db.execute(update(Customer).where(Customer.id == tester.id).values(is_test_account=False))
            await db.commit()
            out = await simulate_provisioning(db, OrderTransitions(db, RecordingNotifier()), o)
            return out, o

    out, o = asyncio.run(scenario())
    assert out is None
    assert o.status == OrderStatus.paid
