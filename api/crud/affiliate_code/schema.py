import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class AffiliateCodeCreate(BaseModel):
    owner_id: uuid.UUID
    commission_rate: Decimal = Field(default=Decimal("20"), ge=0, le=100)
    code: str | None = Field(default=None, min_length=3, max_length=32)
    expires_at: datetime | None = None


class AffiliateCodeRead(BaseModel):
    id: uuid.UUID
    code: str
    owner_id: uuid.UUID
    commission_rate: Decimal
    is_active: bool
    expires_at: datetime | None = None
    click_count: int
    conversion_count: int
    created_at: datetime

    class Config:
        from_attributes = True


class AffiliateCodeExpiryUpdate(BaseModel):
    expires_at: datetime | None = None


class AffiliateCodeListItem(AffiliateCodeRead):
    stylist_name: str | None = None


class AttributionRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    visitor_session: str | None = None
    attributed_at: datetime
    expires_at: datetime
    converted: bool
    converted_at: datetime | None = None
    booking_id: uuid.UUID | None = None

    class Config:
        from_attributes = True


class AffiliateCodeAnalytics(BaseModel):
    code: AffiliateCodeRead
    conversion_rate: float
    recent_attributions: list[AttributionRead] = []
