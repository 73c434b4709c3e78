from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_partner, get_transitions
from app.core.db import get_db
from app.schemas.orders import CreateOrderRequest, CreateOrderResult, OrderOut, UsageOut
from app.services.adapters.esim_access import EsimAccessClient
from app.services.order_view import load_order_detail, load_order_usage
from app.services.orders import OrderRequestError, create_order
from app.services.transitions import OrderTransitions

router = APIRouter()


@router.post("", response_model=CreateOrderResult)
async def create(payload: CreateOrderRequest, db: AsyncSession = Depends(get_db)):
    try:
        order = await create_order(db, payload.user_id, payload.plan_id, payload.parent_order_id)
    except OrderRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CreateOrderResult(
        id=order.id,
        status=order.status.value,
        is_topup=order.is_topup,
        is_test_account=order.is_test_account,
    )


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: str,
    x_user_id: str = Header(...),
    db: AsyncSession = Depends(get_db),
    transitions: OrderTransitions = Depends(get_transitions),
    client: EsimAccessClient = Depends(get_partner),
):
    out = await load_order_detail(db, transitions, client, order_id, x_user_id)
    if out is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return out


@router.get("/{order_id}/usage", response_model=UsageOut)
async def get_order_usage(
    order_id: str,
    x_user_id: str = Header(...),
    db: AsyncSession = Depends(get_db),
    transitions: OrderTransitions = Depends(get_transitions),
    client: EsimAccessClient = Depends(get_partner),
):
    out = await load_order_usage(db, transitions, client, order_id, x_user_id)
    if out is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return out
