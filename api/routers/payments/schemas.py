from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


# YooKassa Webhook Schemas
class Amount(BaseModel):
    value: str
    currency: str


class PaymentObject(BaseModel):
    # payment.* присылает платёж, refund.* присылает возврат с payment_id
    id: str
    status: str
    amount: Optional[Amount] = None
    payment_id: Optional[str] = None
    description: Optional[str] = None
    captured_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    test: bool = False
    paid: Optional[bool] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class YooKassaNotification(BaseModel):
    type: str
    event: str
    object: PaymentObject


class WebhookAck(BaseModel):
    status: str
