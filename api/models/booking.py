import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import UUID, DateTime, Enum, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from utils.clock import utcnow
from .base import Base


# Bookings and their payments are written by the marketplace app.
# This service only reads them when turning a paid booking into a commission.


class BookingPaymentStatus(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    stylist_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    total_price_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now(), nullable=False)

    # Relationships
    payment: Mapped[Optional["BookingPayment"]] = relationship(back_populates="booking")


class BookingPayment(Base):
    __tablename__ = "booking_payments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("bookings.id"), nullable=False, unique=True)
    provider_payment_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    affiliate_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("profiles.id"), nullable=True)
    affiliate_commission_minor: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    affiliate_commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    status: Mapped[BookingPaymentStatus] = mapped_column(
        Enum(BookingPaymentStatus, name="bookingpaymentstatus"),
        default=BookingPaymentStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now(), nullable=False)

    # Relationships
    booking: Mapped["Booking"] = relationship(back_populates="payment")
