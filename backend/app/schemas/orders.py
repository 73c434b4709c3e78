from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

class ActivationOut(BaseModel):
    lpa_string: str
    smdp_address: str
    activation_code: str
    install_url: Optional[str] = None

class OrderOut(BaseModel):
    id: str
    status: str
    display_status: str
    plan_id: str
    plan_name: Optional[str] = None
    is_topup: bool = False
    parent_order_id: Optional[str] = None
    iccid: Optional[str] = None
    data_total_bytes: Optional[int] = None
    data_used_bytes: Optional[int] = None
    data_remaining_bytes: Optional[int] = None
    last_usage_update: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    activation: Optional[ActivationOut] = None
    simulated: bool = False

class UsageOut(BaseModel):
    order_id: str
    status: str
    display_status: str
    data_total_bytes: Optional[int] = None
    data_used_bytes: Optional[int] = None
    data_remaining_bytes: Optional[int] = None
    last_usage_update: Optional[datetime] = None
    refreshed: bool = False
    simulated: bool = False

class CreateOrderRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=36)
    plan_id: str = Field(min_length=1, max_length=64)
    parent_order_id: Optional[str] = Field(default=None, max_length=36)

class CreateOrderResult(BaseModel):
    id: str
    status: str
    is_topup: bool
    is_test_account: bool
