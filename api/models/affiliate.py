import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import UUID, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, func, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from utils.clock import utcnow
from .base import Base


class AffiliateCode(Base):
    __tablename__ = "affiliate_codes"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now(), nullable=False)

    # Relationships
    owner: Mapped["Profile"] = relationship(back_populates="affiliate_codes")
    attributions: Mapped[List["Attribution"]] = relationship(back_populates="affiliate_code")


class Attribution(Base):
    __tablename__ = "affiliate_attributions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("affiliate_codes.id"), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("profiles.id"), nullable=True, index=True)
    visitor_session: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    original_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    attributed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    converted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("bookings.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now(), nullable=False)

    # Relationships
    affiliate_code: Mapped["AffiliateCode"] = relationship(back_populates="attributions")


# не больше одной неконвертированной атрибуции на пару (user, code)
Index(
    "uq_affiliate_attributions_open_user_code",
    Attribution.user_id,
    Attribution.code_id,
    unique=True,
    postgresql_where=Attribution.converted == false(),
    sqlite_where=Attribution.converted == false(),
)
