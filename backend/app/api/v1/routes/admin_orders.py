from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_transitions, require_admin
from app.core.db import get_db
from app.models.order import Order
from app.schemas.admin import RefundRequest, RefundResult
from app.services.order_state import IllegalTransition
from app.services.orders import refund_order
from app.services.payments import PaymentError
from app.services.transitions import OrderTransitions

router = APIRouter()


@router.post("/{order_id}/refund", response_model=RefundResult)
async def refund(
    order_id: str,
    payload: RefundRequest | None = None,
    db: AsyncSession = Depends(get_db),
    transitions: OrderTransitions = Depends(get_transitions),
    admin=Depends(require_admin),
):
    order = await db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        outcome = await refund_order(transitions, order, payload.reason if payload else None)
    except IllegalTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=502, detail=f"Processor refund failed: {e}")
    return RefundResult(
        ok=outcome.applied,
        order_id=order.id,
        status=order.status.value,
        refund_reason=order.refund_reason,
        processor_refund_ref=order.processor_refund_ref,
        detail=None if outcome.applied else "order changed concurrently; retry",
    )
