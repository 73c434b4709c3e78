from pydantic import BaseModel
from typing import Optional, List

class WebhookAck(BaseModel):
    ok: bool = True
    duplicate: bool = False
    effect: Optional[str] = None

class ReadinessOut(BaseModel):
    status: str = "ready"
    service: str
    supported_events: List[str] = []
