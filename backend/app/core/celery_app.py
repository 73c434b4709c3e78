from __future__ import annotations
from celery import Celery
from celery.signals import worker_ready
import logging
from app.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "esim_hub",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.expiry", "app.tasks.usage", "app.tasks.stuck_orders"],
)

celery_app.conf.timezone = "UTC"

expiry_every = max(60, min(86400, int(settings.EXPIRY_SYNC_SECONDS or 3600)))
usage_every = max(300, min(86400, int(settings.USAGE_SYNC_SECONDS or 10800)))
stuck_every = max(60, min(3600, int(settings.STUCK_ORDER_SYNC_SECONDS or 300)))

SCHEDULED_TASKS = (
    "app.tasks.expiry.expire_due_orders",
    "app.tasks.usage.refresh_usage",
    "app.tasks.stuck_orders.recover_stuck_orders",
)

celery_app.conf.beat_schedule = {
    "expire_orders_every_interval": {
        "task": "app.tasks.expiry.expire_due_orders",
        "schedule": float(expiry_every),
    },
    "refresh_usage_every_interval": {
        "task": "app.tasks.usage.refresh_usage",
        "schedule": float(usage_every),
    },
    "recover_stuck_orders_every_interval": {
        "task": "app.tasks.stuck_orders.recover_stuck_orders",
        "schedule": float(stuck_every),
    },
}


@worker_ready.connect
def _kickoff_sync_tasks(sender=None, **kwargs):
    app = getattr(sender, "app", celery_app)
    for task_name in SCHEDULED_TASKS:
        try:
            app.send_task(task_name)
        except Exception as e:
            logger.warning("celery startup task dispatch failed task=%s err=%s", task_name, str(e)[:220])
