import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.crud.affiliate_code import AffiliateCodeService
from api.crud.attribution import AttributionCRUD
from api.crud.commission import CommissionCRUD
from api.crud.commission.schema import EarningsSummary
from api.models import (
    BookingPayment,
    BookingPaymentStatus,
    CommissionRecord,
    CommissionStatus,
    PayoutBatch,
    PayoutStatus,
    Profile,
)
from config import get_env
from services.payouts import PayoutGateway, YooKassaPayoutGateway
from utils.clock import Clock, utcnow
from utils.effects import best_effort
from .checkout import discount_for
from .errors import (
    NotFailed,
    NothingToPay,
    NotPending,
    OwnerNotPayable,
    PersistenceConflict,
    ProviderTransferFailed,
)


class CommissionLedger:
    """
    Turns paid bookings into commission lines and commission lines into
    payout batches.

    Every method commits its own unit of work. Multi-row writes roll back
    as a whole on any error and re-raise.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: PayoutGateway | None = None,
        commissions: CommissionCRUD | None = None,
        attributions: AttributionCRUD | None = None,
        codes: AffiliateCodeService | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
        currency: str | None = None,
    ):
        self.session = session
        self._gateway = gateway
        self.commissions = commissions or CommissionCRUD()
        self.attributions = attributions or AttributionCRUD()
        self.codes = codes or AffiliateCodeService()
        self.clock = clock
        self.log = logger or logging.getLogger(__name__)
        self.currency = currency or get_env().PAYOUT_CURRENCY

    @property
    def gateway(self) -> PayoutGateway:
        # шлюз нужен только для выплат, не создаём его ради записи комиссий
        if self._gateway is None:
            self._gateway = YooKassaPayoutGateway(logger=self.log)
        return self._gateway

    async def _load_payment(self, booking_id: uuid.UUID) -> BookingPayment | None:
        res = await self.session.execute(
            select(BookingPayment)
            .where(BookingPayment.booking_id == booking_id)
            .options(selectinload(BookingPayment.booking))
        )
        return res.scalar_one_or_none()

    async def record_commission(self, booking_id: uuid.UUID) -> CommissionRecord | None:
        """
        Idempotent per booking. Returns the existing record if there is one,
        None when the booking carries no affiliate commission.
        """
        existing = await self.commissions.get_by_booking(booking_id, self.session)
        if existing is not None:
            return existing

        payment = await self._load_payment(booking_id)
        if payment is None or payment.affiliate_id is None:
            self.log.debug("Booking %s has no affiliate payment data", booking_id)
            return None
        if payment.status != BookingPaymentStatus.SUCCEEDED:
            self.log.info("Booking %s payment is %s, no commission yet", booking_id, payment.status.value)
            return None

        rate = payment.affiliate_commission_rate
        amount = payment.affiliate_commission_minor
        if amount is None:
            if rate is None:
                self.log.warning("Booking %s has an affiliate but neither amount nor rate", booking_id)
                return None
            amount = discount_for(payment.amount_minor, rate)

        customer_id = payment.booking.customer_id
        attribution_id = await self.attributions.open_attribution_id(customer_id, payment.affiliate_id, self.session)

        now = self.clock()
        values = {
            "id": uuid.uuid4(),
            "booking_id": booking_id,
            "owner_id": payment.affiliate_id,
            "attribution_id": attribution_id,
            "amount_minor": amount,
            "commission_rate": rate if rate is not None else 0,
            "status": CommissionStatus.PENDING,
            "created_at": now,
        }
        try:
            record = await self.commissions.insert_or_get(values, self.session)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if record.id != values["id"]:
            self.log.info("Commission for booking %s already recorded by a concurrent writer", booking_id)
            return record

        self.log.info("Recorded commission %s (%s minor) for booking %s", record.id, amount, booking_id)
        async with best_effort(f"convert attribution for booking {booking_id}", self.log, rollback=self.session):
            converted = await self.attributions.mark_converted(
                user_id=customer_id,
                owner_id=payment.affiliate_id,
                booking_id=booking_id,
                converted_at=now,
                session=self.session,
            )
            if converted is not None:
                await self.codes.increment_conversions(converted.code_id, self.session)
            await self.session.commit()

        await self.session.refresh(record)
        return record

    async def reverse_commission(self, booking_id: uuid.UUID) -> CommissionRecord | None:
        """
        Refunded booking: a pending, unbatched commission is failed and the
        attribution it converted is reopened. Only acts when the booking's
        payment is recorded as refunded. Anything further along is left alone.
        """
        record = await self.commissions.get_by_booking(booking_id, self.session)
        if record is None:
            return None

        payment = await self._load_payment(booking_id)
        if payment is None or payment.status != BookingPaymentStatus.REFUNDED:
            self.log.warning(
                "Not reversing commission %s: payment for booking %s is %s",
                record.id, booking_id, payment.status.value if payment else "missing",
            )
            return record
        if record.status != CommissionStatus.PENDING or record.batched_at is not None:
            self.log.warning(
                "Refund for booking %s after commission %s reached %s; leaving it",
                booking_id, record.id, record.status.value,
            )
            return record

        record.status = CommissionStatus.FAILED
        await self.session.commit()
        self.log.info("Reversed commission %s for booking %s", record.id, booking_id)

        async with best_effort(f"reopen attribution for booking {booking_id}", self.log, rollback=self.session):
            reopened = await self.attributions.unmark_converted(booking_id, self.session)
            if reopened is not None:
                await self.codes.decrement_conversions(reopened.code_id, self.session)
            await self.session.commit()

        await self.session.refresh(record)
        return record

    async def record_refund(self, booking_id: uuid.UUID) -> CommissionRecord | None:
        """Marks the booking's payment refunded, then reverses its commission."""
        payment = await self._load_payment(booking_id)
        if payment is None:
            self.log.warning("Refund for unknown booking payment %s", booking_id)
            return None
        if payment.status != BookingPaymentStatus.REFUNDED:
            payment.status = BookingPaymentStatus.REFUNDED
            await self.session.commit()
        return await self.reverse_commission(booking_id)

    async def generate_payout_batch(
        self,
        owner_id: uuid.UUID,
        period_start: datetime,
        period_end: datetime,
    ) -> PayoutBatch:
        records = await self.commissions.select_unbatched(owner_id, period_start, period_end, self.session)
        if not records:
            raise NothingToPay(f"No unbatched commissions for {owner_id} in [{period_start}, {period_end})")

        now = self.clock()
        batch = PayoutBatch(
            id=uuid.uuid4(),
            owner_id=owner_id,
            period_start=period_start,
            period_end=period_end,
            amount_minor=sum(r.amount_minor for r in records),
            currency=self.currency,
            record_count=len(records),
            status=PayoutStatus.PENDING,
            created_at=now,
        )
        try:
            self.session.add(batch)
            await self.session.flush()
            taken = await self.commissions.mark_batched([r.id for r in records], batch.id, now, self.session)
            if taken != len(records):
                raise PersistenceConflict(
                    f"{len(records) - taken} of {len(records)} commissions for {owner_id} were batched concurrently"
                )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            self.log.error("Payout batch for %s rolled back", owner_id, exc_info=True)
            raise

        self.log.info("Created payout batch %s: %s records, %s minor", batch.id, batch.record_count, batch.amount_minor)
        return batch

    async def generate_for_period(self, period_start: datetime, period_end: datetime) -> list[PayoutBatch]:
        """One batch per owner with anything to pay in the period."""
        batches = []
        for owner_id in await self.commissions.owners_with_unbatched(period_start, period_end, self.session):
            try:
                batches.append(await self.generate_payout_batch(owner_id, period_start, period_end))
            except NothingToPay:
                self.log.info("Nothing to pay for %s", owner_id)
            except PersistenceConflict as e:
                self.log.warning("Skipping %s: %s", owner_id, e)
        return batches

    async def submit_payout_batch(self, batch_id: uuid.UUID) -> PayoutBatch:
        batch = await self.commissions.get_batch(batch_id, self.session)
        if batch.status != PayoutStatus.PENDING:
            raise NotPending(f"Batch {batch_id} is {batch.status.value}")

        owner = await self.session.get(Profile, batch.owner_id)
        if owner is None or not owner.payout_account_id:
            raise OwnerNotPayable(f"Owner {batch.owner_id} has no payout destination")

        if not await self.commissions.claim_pending_batch(batch_id, self.clock(), self.session):
            await self.session.rollback()
            raise NotPending(f"Batch {batch_id} was claimed by another submitter")
        await self.session.commit()
        await self.session.refresh(batch)

        try:
            transfer = await self.gateway.transfer(
                amount_minor=batch.amount_minor,
                currency=batch.currency,
                destination=owner.payout_account_id,
                idempotence_key=str(batch.id),
                description=f"Affiliate payout {batch.period_start:%Y-%m-%d} - {batch.period_end:%Y-%m-%d}",
                metadata={"batch_id": str(batch.id), "owner_id": str(batch.owner_id)},
            )
        except Exception as e:
            batch.failure_reason = str(e) or e.__class__.__name__
            await self.commissions.set_batch_status(batch, PayoutStatus.FAILED, self.session)
            await self.session.commit()
            self.log.error("Payout batch %s failed: %s", batch.id, batch.failure_reason)
            raise ProviderTransferFailed(batch.failure_reason) from e

        now = self.clock()
        batch.provider_transfer_id = transfer.transfer_id
        batch.paid_at = now
        await self.commissions.set_batch_status(batch, PayoutStatus.PAID, self.session, paid_at=now)
        await self.session.commit()
        self.log.info("Payout batch %s paid, transfer %s", batch.id, transfer.transfer_id)
        return batch

    async def reset_failed_batch(self, batch_id: uuid.UUID) -> PayoutBatch:
        """Administrative re-drive: failed -> pending so the batch can be submitted again."""
        batch = await self.commissions.get_batch(batch_id, self.session)
        if batch.status != PayoutStatus.FAILED:
            raise NotFailed(f"Batch {batch_id} is {batch.status.value}")

        batch.failure_reason = None
        batch.submitted_at = None
        await self.commissions.set_batch_status(batch, PayoutStatus.PENDING, self.session)
        await self.session.commit()
        self.log.info("Payout batch %s reset to pending", batch.id)
        return batch

    async def earnings_summary(self, owner_id: uuid.UUID) -> EarningsSummary:
        res = await self.session.execute(
            select(
                CommissionRecord.status,
                func.coalesce(func.sum(CommissionRecord.amount_minor), 0),
                func.count(CommissionRecord.id),
            )
            .where(CommissionRecord.owner_id == owner_id)
            .group_by(CommissionRecord.status)
        )
        summary = EarningsSummary(owner_id=owner_id)
        for status, amount, count in res.all():
            setattr(summary, f"{status.value}_minor", int(amount))
            # failed комиссии в заработок не входят
            if status != CommissionStatus.FAILED:
                summary.total_minor += int(amount)
                summary.record_count += count
        if summary.record_count:
            summary.average_minor = summary.total_minor // summary.record_count
        return summary
