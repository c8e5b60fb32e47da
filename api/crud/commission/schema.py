import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from api.models import CommissionStatus, PayoutStatus


class CommissionRead(BaseModel):
    id: uuid.UUID
    booking_id: uuid.UUID
    owner_id: uuid.UUID
    attribution_id: uuid.UUID | None = None
    amount_minor: int
    commission_rate: Decimal
    status: CommissionStatus
    batch_id: uuid.UUID | None = None
    batched_at: datetime | None = None
    created_at: datetime
    paid_at: datetime | None = None

    class Config:
        from_attributes = True


class PayoutBatchRead(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    period_start: datetime
    period_end: datetime
    amount_minor: int
    currency: str
    record_count: int
    status: PayoutStatus
    provider_transfer_id: str | None = None
    failure_reason: str | None = None
    created_at: datetime
    submitted_at: datetime | None = None
    paid_at: datetime | None = None

    class Config:
        from_attributes = True


class EarningsSummary(BaseModel):
    owner_id: uuid.UUID
    total_minor: int = 0
    pending_minor: int = 0
    processing_minor: int = 0
    paid_minor: int = 0
    failed_minor: int = 0
    record_count: int = 0
    average_minor: int = 0


class CommissionMetrics(BaseModel):
    """Platform-wide commission totals. `total_minor` leaves failed commissions out."""

    total_minor: int = 0
    pending_minor: int = 0
    processing_minor: int = 0
    paid_minor: int = 0
    failed_minor: int = 0
    record_count: int = 0
