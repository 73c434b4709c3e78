from fastapi import APIRouter
from app.api.v1.routes import (
    orders,
    admin_orders,
    webhooks_payments,
    webhooks_esim_access,
)

api_router = APIRouter()
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(admin_orders.router, prefix="/admin/orders", tags=["admin-orders"])
api_router.include_router(webhooks_payments.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(webhooks_esim_access.router, prefix="/webhooks", tags=["webhooks"])
