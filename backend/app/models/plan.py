from sqlalchemy import Boolean, Float, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from app.core.db import Base
from app.models.common import TimestampMixin

BYTES_PER_GB = 1024 ** 3

class Plan(Base, TimestampMixin):
    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    region_code: Mapped[str | None] = mapped_column(String(16), nullable=True)

    sku: Mapped[str] = mapped_column(String(64), nullable=False)  # partner package code
    data_gb: Mapped[float] = mapped_column(Float, nullable=False)
    validity_days: Mapped[int] = mapped_column(Integer, nullable=False)

    retail_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def total_bytes(self) -> int:
        return int(float(self.data_gb) * BYTES_PER_GB)
