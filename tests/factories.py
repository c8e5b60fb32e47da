import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from api.models import (
    AffiliateCode,
    Attribution,
    Booking,
    BookingPayment,
    BookingPaymentStatus,
    CommissionRecord,
    CommissionStatus,
    Profile,
    ProfileRole,
)

T0 = datetime(2026, 6, 1, 12, 0, 0)


class FixedClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MemoryTokenStorage:
    def __init__(self, value: str | None = None):
        self.value = value
        self.expires_at = None
        self.cleared = 0

    def get(self):
        return self.value

    def set(self, value, expires_at):
        self.value = value
        self.expires_at = expires_at

    def clear(self):
        self.value = None
        self.cleared += 1


async def add_profile(session: AsyncSession, name: str, role=ProfileRole.CUSTOMER, **kwargs) -> Profile:
    profile = Profile(id=uuid.uuid4(), full_name=name, role=role, is_active=kwargs.pop("is_active", True), **kwargs)
    session.add(profile)
    await session.commit()
    return profile


async def add_stylist(session: AsyncSession, name: str = "Kari Nordmann", **kwargs) -> Profile:
    kwargs.setdefault("payout_account_id", "payout_token_kari")
    return await add_profile(session, name, role=ProfileRole.STYLIST, **kwargs)


async def add_code(
    session: AsyncSession,
    owner: Profile,
    code: str = "SOMMER20",
    rate: Decimal = Decimal("20"),
    **kwargs,
) -> AffiliateCode:
    record = AffiliateCode(
        id=uuid.uuid4(),
        code=code,
        owner_id=owner.id,
        commission_rate=rate,
        is_active=kwargs.pop("is_active", True),
        click_count=0,
        conversion_count=0,
        **kwargs,
    )
    session.add(record)
    await session.commit()
    return record


async def add_attribution(
    session: AsyncSession,
    code: AffiliateCode,
    user: Profile,
    attributed_at: datetime = T0,
    days: int = 30,
    **kwargs,
) -> Attribution:
    record = Attribution(
        id=uuid.uuid4(),
        code_id=code.id,
        owner_id=code.owner_id,
        user_id=user.id,
        attributed_at=attributed_at,
        expires_at=attributed_at + timedelta(days=days),
        converted=kwargs.pop("converted", False),
        **kwargs,
    )
    session.add(record)
    await session.commit()
    return record


async def add_paid_booking(
    session: AsyncSession,
    customer: Profile,
    stylist: Profile,
    affiliate: Profile | None = None,
    amount_minor: int = 100000,
    commission_minor: int | None = 20000,
    rate: Decimal | None = Decimal("20"),
    status: BookingPaymentStatus = BookingPaymentStatus.SUCCEEDED,
    provider_payment_id: str | None = None,
) -> Booking:
    booking = Booking(id=uuid.uuid4(), customer_id=customer.id, stylist_id=stylist.id, total_price_minor=amount_minor)
    session.add(booking)
    session.add(BookingPayment(
        id=uuid.uuid4(),
        booking_id=booking.id,
        provider_payment_id=provider_payment_id,
        amount_minor=amount_minor,
        affiliate_id=affiliate.id if affiliate else None,
        affiliate_commission_minor=commission_minor if affiliate else None,
        affiliate_commission_rate=rate if affiliate else None,
        status=status,
    ))
    await session.commit()
    return booking


async def add_commission(
    session: AsyncSession,
    owner: Profile,
    booking: Booking,
    amount_minor: int,
    created_at: datetime = T0,
    status: CommissionStatus = CommissionStatus.PENDING,
) -> CommissionRecord:
    record = CommissionRecord(
        id=uuid.uuid4(),
        booking_id=booking.id,
        owner_id=owner.id,
        amount_minor=amount_minor,
        commission_rate=Decimal("20"),
        status=status,
        created_at=created_at,
    )
    session.add(record)
    await session.commit()
    return record
