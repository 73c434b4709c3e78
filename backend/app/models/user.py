from __future__ import annotations

import uuid

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin


class Customer(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    # Authoritative test flag. Orders keep a cached copy for fast-path checks,
    # but every simulation entry point re-reads this column.
    is_test_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
