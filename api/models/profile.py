import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import UUID, Boolean, DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from utils.clock import utcnow
from .base import Base


class ProfileRole(enum.Enum):
    CUSTOMER = "customer"
    STYLIST = "stylist"
    ADMIN = "admin"


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[ProfileRole] = mapped_column(
        Enum(ProfileRole, name="profilerole"),
        default=ProfileRole.CUSTOMER,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # куда провайдер переводит выплаты; без него стилисту платить нельзя
    payout_account_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now(), nullable=False)

    # Codes that I own
    affiliate_codes: Mapped[List["AffiliateCode"]] = relationship(back_populates="owner")

    @property
    def can_own_codes(self) -> bool:
        return self.is_active and self.role == ProfileRole.STYLIST
