from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.idempotency import IdempotencyRecord, NotificationEffect, NotificationSource
from app.services.order_state import IllegalTransition

logger = logging.getLogger(__name__)


class Admission(str, enum.Enum):
    accepted = "accepted"
    duplicate = "duplicate"


async def admit(db: AsyncSession, source: NotificationSource, notification_id: str, event_type: str) -> Admission:
    """Record a notification as seen; the unique constraint decides the winner.

    Must run before anything else touches the notification. The insert is
    committed on its own so a later failure in the handler cannot un-see it.
    """
    db.add(IdempotencyRecord(source=source, notification_id=notification_id, event_type=event_type[:64]))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return Admission.duplicate
    return Admission.accepted


async def record_effect(
    db: AsyncSession,
    source: NotificationSource,
    notification_id: str,
    effect: NotificationEffect,
    detail: str | None = None,
) -> None:
    await db.execute(
        update(IdempotencyRecord)
        .where(IdempotencyRecord.source == source, IdempotencyRecord.notification_id == notification_id)
        .values(effect=effect, detail=(detail or None) and detail[:255])
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def run_once(
    db: AsyncSession,
    source: NotificationSource,
    notification_id: str,
    event_type: str,
    handler: Callable[[], Awaitable[NotificationEffect]],
) -> tuple[Admission, NotificationEffect | None]:
    """Admit, interpret at most once, and record what the notification did.

    A handler exception is recorded as ``error`` and re-raised; the sender's
    retry then lands on the existing row as a duplicate.
    """
    admission = await admit(db, source, notification_id, event_type)
    if admission == Admission.duplicate:
        logger.info("duplicate notification source=%s id=%s type=%s", source.value, notification_id, event_type)
        return admission, None

    detail = None
    try:
        effect = await handler()
    except IllegalTransition as e:
        logger.warning("notification discarded source=%s id=%s: %s", source.value, notification_id, e)
        effect, detail = NotificationEffect.illegal_transition, str(e)
    except Exception as e:
        await db.rollback()
        await record_effect(db, source, notification_id, NotificationEffect.error, str(e))
        raise
    await record_effect(db, source, notification_id, effect, detail)
    return admission, effect
