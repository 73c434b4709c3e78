from __future__ import annotations
from dataclasses import dataclass
from app.core.config import settings
from app.models.order import OrderStatus
from app.services.order_state import OrderEvent

MIB = 1024 * 1024


@dataclass(frozen=True)
class UsageDecision:
    bytes_used: int
    bytes_remaining: int
    event: OrderEvent | None  # None: leave status alone


def remaining_bytes(bytes_used: int, bytes_total: int, bonus_bytes: int = 0, floor: int | None = None) -> int:
    """Remaining capacity after applying the depletion floor.

    Totals from the metering partner carry rounding noise near exhaustion, so
    anything strictly between zero and the floor counts as nothing left.
    """
    floor = settings.DEPLETION_FLOOR_BYTES if floor is None else floor
    used = max(0, int(bytes_used))
    remaining = max(0, int(bytes_total) - used) + max(0, int(bonus_bytes))
    if 0 < remaining < floor:
        return 0
    return remaining


def propose_event(status: OrderStatus, bytes_remaining: int) -> OrderEvent | None:
    # only {active, depleted} are ever touched by usage
    if bytes_remaining == 0 and status == OrderStatus.active:
        return OrderEvent.usage_depleted
    if bytes_remaining > 0 and status == OrderStatus.depleted:
        return OrderEvent.usage_restored
    return None


def evaluate(
    status: OrderStatus,
    bytes_used: int,
    bytes_total: int,
    bonus_bytes: int = 0,
    floor: int | None = None,
) -> UsageDecision:
    remaining = remaining_bytes(bytes_used, bytes_total, bonus_bytes, floor)
    return UsageDecision(
        bytes_used=max(0, int(bytes_used)),
        bytes_remaining=remaining,
        event=propose_event(status, remaining),
    )
