from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.db import AsyncSessionLocal
from app.models.common import as_utc
from app.models.order import Order
from app.services.adapters.base import MeteringClient, PartnerError
from app.services.adapters.factory import get_partner_client
from app.services.downstream import DownstreamNotifier
from app.services.locks import redis_lock
from app.services.order_state import IllegalTransition
from app.services.task_metrics import TaskRunStats
from app.services.transitions import OrderTransitions
from app.services.usage_sync import USAGE_STATUSES, apply_usage_sample

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


@celery_app.task(name="app.tasks.usage.refresh_usage")
def refresh_usage():
    lock_ttl = max(90, int(settings.USAGE_SYNC_SECONDS or 60) * 2)
    with redis_lock(f"{settings.APP_NAME}:lock:refresh_usage", ttl_seconds=lock_ttl) as ok:
        if not ok:
            logger.info("refresh_usage skipped: lock not acquired")
            return
        asyncio.run(_refresh_usage_async())


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def sync_usage(
    db: AsyncSession,
    client: MeteringClient,
    notifier: DownstreamNotifier | None = None,
    batch_size: int = 500,
) -> TaskRunStats:
    """Pull usage for every metered real order and apply the usage policy."""
    stats = TaskRunStats()
    transitions = OrderTransitions(db, notifier)
    last_id = ""
    failure_log_budget = 25

    while True:
        q = await db.execute(
            select(Order.id, Order.transaction_ref, Order.last_usage_update)
            .where(
                Order.status.in_(USAGE_STATUSES),
                Order.transaction_ref.is_not(None),
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

        # stalest first inside the batch
        pending = sorted(rows, key=lambda r: as_utc(r[2]) or _NEVER)
        for chunk in _chunks(pending, client.max_batch):
            refs = [r[1] for r in chunk]
            stats.remote_calls += 1
            try:
                samples = await client.get_usage(refs)
            except PartnerError as e:
                stats.remote_failures += 1
                if failure_log_budget > 0:
                    logger.warning("refresh_usage batch failed refs=%s err=%s", len(refs), str(e)[:220])
                    failure_log_budget -= 1
                continue

            by_ref = {s.transaction_ref: s for s in samples}
            for order_id, ref, _ in chunk:
                sample = by_ref.get(ref)
                if sample is None:
                    stats.skipped += 1
                    continue
                try:
                    order = await db.get(Order, order_id)
                    if order is None:
                        continue
                    outcome = await apply_usage_sample(transitions, order, sample)
                except IllegalTransition as e:
                    stats.skipped += 1
                    logger.warning("refresh_usage discarded order_id=%s: %s", order_id, e)
                    continue
                except Exception as e:
                    stats.errors += 1
                    await db.rollback()
                    logger.warning("refresh_usage failed order_id=%s err=%s", order_id, str(e)[:220])
                    continue
                if outcome is None:
                    stats.stale_samples += 1
                elif outcome.changed_status:
                    stats.transitioned += 1
                else:
                    stats.unchanged += 1

        last_id = rows[-1][0]
        if len(rows) < batch_size:
            break

    logger.info("refresh_usage stats=%s", stats)
    return stats


# internal

async def _refresh_usage_async():
    batch_size = max(100, min(10000, int(settings.USAGE_SYNC_BATCH_SIZE or 500)))
    client = get_partner_client()
    try:
        async with AsyncSessionLocal() as db:
            return await sync_usage(db, client, batch_size=batch_size)
    finally:
        await client.aclose()
