from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.db import AsyncSessionLocal
from app.models.common import as_utc, utcnow
from app.models.order import Order, OrderStatus
from app.models.plan import Plan
from app.services.downstream import DownstreamNotifier
from app.services.locks import redis_lock
from app.services.order_state import OrderEvent
from app.services.task_metrics import TaskRunStats
from app.services.transitions import OrderTransitions

logger = logging.getLogger(__name__)

EXPIRABLE_STATUSES = (OrderStatus.active, OrderStatus.completed, OrderStatus.provisioning)


@celery_app.task(name="app.tasks.expiry.expire_due_orders")
def expire_due_orders():
    lock_ttl = max(90, int(settings.EXPIRY_SYNC_SECONDS or 60) * 2)
    with redis_lock(f"{settings.APP_NAME}:lock:expire_due_orders", ttl_seconds=lock_ttl) as ok:
        if not ok:
            logger.info("expire_due_orders skipped: lock not acquired")
            return
        asyncio.run(_expire_due_orders_async())


def is_due(activated_at: datetime | None, validity_days: int, now: datetime) -> bool:
    if activated_at is None:
        return False
    return now > as_utc(activated_at) + timedelta(days=int(validity_days))


async def sweep_expired(
    db: AsyncSession,
    notifier: DownstreamNotifier | None = None,
    now: datetime | None = None,
    batch_size: int = 500,
) -> TaskRunStats:
    """Fire validity_elapsed for every real order past ``activated_at + validity_days``."""
    stats = TaskRunStats()
    now = now or utcnow()
    transitions = OrderTransitions(db, notifier)
    last_id = ""
    while True:
        q = await db.execute(
            select(Order.id, Order.activated_at, Plan.validity_days)
            .join(Plan, Plan.id == Order.plan_id)
            .where(
                Order.status.in_(EXPIRABLE_STATUSES),
                Order.activated_at.is_not(None),
                Order.is_test_account == False,
                Order.id > last_id,
            )
            .order_by(Order.id.asc())
            .limit(batch_size)
        )
        rows = q.all()
        if not rows:
            break
        stats.scanned_orders += len(rows)

        for order_id, activated_at, validity_days in rows:
            if not is_due(activated_at, validity_days, now):
                continue
            try:
                order = await db.get(Order, order_id)
                if order is None:
                    continue
                outcome = await transitions.try_apply(order, OrderEvent.validity_elapsed, now=now)
                if outcome is not None and outcome.changed_status:
                    stats.transitioned += 1
                else:
                    stats.unchanged += 1
            except Exception as e:
                stats.errors += 1
                await db.rollback()
                logger.warning("expire_due_orders failed order_id=%s err=%s", order_id, str(e)[:220])

        last_id = rows[-1][0]
        if len(rows) < batch_size:
            break

    logger.info("expire_due_orders stats=%s", stats)
    return stats


# internal

async def _expire_due_orders_async():
    batch_size = max(100, min(10000, int(settings.EXPIRY_SYNC_BATCH_SIZE or 500)))
    async with AsyncSessionLocal() as db:
        return await sweep_expired(db, batch_size=batch_size)
