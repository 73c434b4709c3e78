from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.db import AsyncSessionLocal
from app.models.common import utcnow
from app.models.order import Order, OrderStatus
from app.services.adapters.base import ProvisioningClient
from app.services.adapters.factory import get_partner_client
from app.services.downstream import DownstreamNotifier
from app.services.locks import redis_lock
from app.services.recovery import RecoveryResult, recover_provisioning_order, resubmit_paid_order
from app.services.task_metrics import TaskRunStats
from app.services.transitions import OrderTransitions

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.stuck_orders.recover_stuck_orders")
def recover_stuck_orders():
    lock_ttl = max(90, int(settings.STUCK_ORDER_SYNC_SECONDS or 60) * 2)
    with redis_lock(f"{settings.APP_NAME}:lock:recover_stuck_orders", ttl_seconds=lock_ttl) as ok:
        if not ok:
            logger.info("recover_stuck_orders skipped: lock not acquired")
            return
        asyncio.run(_recover_stuck_orders_async())


def _count(stats: TaskRunStats, result: RecoveryResult) -> None:
    if result in (RecoveryResult.completed, RecoveryResult.failed):
        stats.transitioned += 1
    elif result == RecoveryResult.pending:
        stats.unchanged += 1
    else:
        stats.skipped += 1


async def recover_stuck(
    db: AsyncSession,
    client: ProvisioningClient,
    notifier: DownstreamNotifier | None = None,
    now: datetime | None = None,
    batch_size: int = 50,
    grace: timedelta | None = None,
) -> TaskRunStats:
    """Re-poll provisioning orders and re-submit paid ones the partner never accepted."""
    stats = TaskRunStats()
    now = now or utcnow()
    cutoff = now - (grace if grace is not None else timedelta(minutes=settings.STUCK_ORDER_GRACE_MINUTES))
    transitions = OrderTransitions(db, notifier)

    stuck = (
        Order.is_test_account == False,
        Order.status_changed_at <= cutoff,
    )
    # provisioning orders the partner knows about, then paid orders it never saw
    selections = (
        (OrderStatus.provisioning, Order.partner_order_ref.is_not(None)),
        (OrderStatus.paid, Order.partner_order_ref.is_(None)),
    )
    for status, ref_clause in selections:
        last_id = ""
        while True:
            q = await db.execute(
                select(Order.id)
                .where(Order.status == status, ref_clause, Order.id > last_id, *stuck)
                .order_by(Order.id.asc())
                .limit(batch_size)
            )
            ids = list(q.scalars().all())
            if not ids:
                break
            stats.scanned_orders += len(ids)

            for order_id in ids:
                try:
                    order = await db.get(Order, order_id)
                    if order is None:
                        continue
                    stats.remote_calls += 1
                    if status == OrderStatus.provisioning:
                        result = await recover_provisioning_order(transitions, order, client, now)
                    else:
                        result = await resubmit_paid_order(db, transitions, order, client)
                    _count(stats, result)
                except Exception as e:
                    stats.errors += 1
                    await db.rollback()
                    logger.warning("recover_stuck_orders failed order_id=%s err=%s", order_id, str(e)[:220])

            last_id = ids[-1]
            if len(ids) < batch_size:
                break

    logger.info("recover_stuck_orders stats=%s", stats)
    return stats


# internal

async def _recover_stuck_orders_async():
    batch_size = max(10, min(1000, int(settings.STUCK_ORDER_BATCH_SIZE or 50)))
    client = get_partner_client()
    try:
        async with AsyncSessionLocal() as db:
            return await recover_stuck(db, client, batch_size=batch_size)
    finally:
        await client.aclose()
