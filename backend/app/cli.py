import argparse
import asyncio
from app.core.db import AsyncSessionLocal
from app.models.order import Order
from app.services.adapters.factory import get_partner_client
from app.services.order_state import IllegalTransition
from app.services.orders import refund_order
from app.services.payments import PaymentError
from app.services.transitions import OrderTransitions
from app.tasks.expiry import sweep_expired
from app.tasks.stuck_orders import recover_stuck
from app.tasks.usage import sync_usage


async def run_expire(batch_size: int):
    async with AsyncSessionLocal() as db:
        stats = await sweep_expired(db, batch_size=batch_size)
    print(f"[EXPIRE] {stats}")


async def run_refresh_usage(batch_size: int):
    client = get_partner_client()
    try:
        async with AsyncSessionLocal() as db:
            stats = await sync_usage(db, client, batch_size=batch_size)
    finally:
        await client.aclose()
    print(f"[USAGE] {stats}")


async def run_recover_stuck(batch_size: int):
    client = get_partner_client()
    try:
        async with AsyncSessionLocal() as db:
            stats = await recover_stuck(db, client, batch_size=batch_size)
    finally:
        await client.aclose()
    print(f"[RECOVER] {stats}")


async def run_refund(order_id: str, reason: str | None):
    async with AsyncSessionLocal() as db:
        order = await db.get(Order, order_id)
        if order is None:
            raise SystemExit("Order not found")
        try:
            outcome = await refund_order(OrderTransitions(db), order, reason)
        except IllegalTransition as e:
            raise SystemExit(f"Refund refused: {e}")
        except PaymentError as e:
            raise SystemExit(f"Processor refund failed: {e}")
        if not outcome.applied:
            raise SystemExit("Order changed concurrently; retry")
        print("Refunded order:", order.id, f"(was {outcome.from_status.value})")


def main():
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    sub = parser.add_subparsers(dest="cmd")

    e = sub.add_parser("expire-orders")
    e.add_argument("--batch-size", type=int, default=500)

    u = sub.add_parser("refresh-usage")
    u.add_argument("--batch-size", type=int, default=500)

    s = sub.add_parser("recover-stuck")
    s.add_argument("--batch-size", type=int, default=50)

    r = sub.add_parser("refund")
    r.add_argument("--order-id", required=True)
    r.add_argument("--reason", default=None)

    args = parser.parse_args()
    if args.cmd == "expire-orders":
        asyncio.run(run_expire(args.batch_size))
    elif args.cmd == "refresh-usage":
        asyncio.run(run_refresh_usage(args.batch_size))
    elif args.cmd == "recover-stuck":
        asyncio.run(run_recover_stuck(args.batch_size))
    elif args.cmd == "refund":
        asyncio.run(run_refund(args.order_id, args.reason))
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
