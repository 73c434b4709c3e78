from __future__ import annotations

import enum

from sqlalchemy import Enum, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin


class NotificationSource(str, enum.Enum):
    payments = "payments"
    esim_access = "esim_access"


class NotificationEffect(str, enum.Enum):
    accepted = "accepted"   # admitted, not yet interpreted
    applied = "applied"
    ignored = "ignored"
    illegal_transition = "illegal_transition"
    error = "error"


class IdempotencyRecord(Base, TimestampMixin):
    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint("source", "notification_id", name="uq_idempotency_source_notification"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[NotificationSource] = mapped_column(Enum(NotificationSource), nullable=False)

    # the sender's own event id, never a payload hash
    notification_id: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)

    effect: Mapped[NotificationEffect] = mapped_column(
        Enum(NotificationEffect), default=NotificationEffect.accepted, nullable=False
    )
    detail: Mapped[str | None] = mapped_column(String(255), nullable=True)
