from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin, utcnow


class OrderStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    provisioning = "provisioning"
    completed = "completed"
    active = "active"
    depleted = "depleted"
    expired = "expired"
    failed = "failed"
    refunded = "refunded"


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    plan_id: Mapped[str] = mapped_column(String(64), ForeignKey("plans.id"), index=True, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.pending, nullable=False)
    status_changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_topup: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    parent_order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("orders.id"), nullable=True)
    # cached from users.is_test_account at creation
    is_test_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # payment facts
    processor_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # provisioning facts
    partner_order_ref: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    iccid: Mapped[str | None] = mapped_column(String(32), index=True, nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    smdp_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    activation_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    install_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # usage facts
    data_used_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    data_remaining_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_usage_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # written by the rewards ledger; read here
    bonus_bytes_credited: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    bonus_bytes_in_partner_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processor_refund_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    @property
    def has_activation_details(self) -> bool:
        return bool(self.smdp_address and self.activation_code)

    @property
    def bonus_bytes_pending(self) -> int:
        return max(0, int(self.bonus_bytes_credited or 0) - int(self.bonus_bytes_in_partner_total or 0))


Index("ix_orders_status_changed", Order.status, Order.status_changed_at)
