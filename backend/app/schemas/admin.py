from pydantic import BaseModel, Field
from typing import Optional

class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)

class RefundResult(BaseModel):
    ok: bool
    order_id: str
    status: str
    refund_reason: Optional[str] = None
    processor_refund_ref: Optional[str] = None
    detail: Optional[str] = None
