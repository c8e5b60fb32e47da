import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from api.database import upsert
from api.models import CommissionRecord, CommissionStatus, PayoutBatch, PayoutStatus
from .interface import CommissionInterface
from .schema import CommissionMetrics


class BatchNotFound(Exception): ...


class CommissionCRUD(CommissionInterface):
    async def get_by_booking(self, booking_id: uuid.UUID, session: AsyncSession) -> CommissionRecord | None:
        res = await session.execute(select(CommissionRecord).where(CommissionRecord.booking_id == booking_id))
        return res.scalar_one_or_none()

    async def insert_or_get(self, values: Dict[str, Any], session: AsyncSession) -> CommissionRecord:
        """
        Single-statement insert keyed on booking_id. When another writer won
        the race nothing is returned and the existing row is read back instead.
        Does not commit.
        """
        stmt = (
            upsert(session, CommissionRecord)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["booking_id"])
            .returning(CommissionRecord)
        )
        res = await session.execute(stmt)
        record = res.scalar_one_or_none()
        if record is not None:
            return record
        existing = await self.get_by_booking(values["booking_id"], session)
        if existing is None:
            # конфликт без строки быть не может, если только её не удалили между запросами
            raise RuntimeError(f"Commission for booking {values['booking_id']} vanished after conflict")
        return existing

    async def select_unbatched(
        self,
        owner_id: uuid.UUID,
        period_start: datetime,
        period_end: datetime,
        session: AsyncSession,
    ) -> list[CommissionRecord]:
        res = await session.execute(
            select(CommissionRecord)
            .where(
                CommissionRecord.owner_id == owner_id,
                CommissionRecord.status == CommissionStatus.PENDING,
                CommissionRecord.batched_at.is_(None),
                CommissionRecord.created_at >= period_start,
                CommissionRecord.created_at < period_end,
            )
            .order_by(CommissionRecord.created_at)
        )
        return list(res.scalars().all())

    async def mark_batched(
        self,
        record_ids: list[uuid.UUID],
        batch_id: uuid.UUID,
        batched_at: datetime,
        session: AsyncSession,
    ) -> int:
        """
        Attaches still-unbatched pending records to the batch and returns how
        many rows were taken. Records another batch got first are left alone.
        Does not commit.
        """
        res = await session.execute(
            update(CommissionRecord)
            .where(
                CommissionRecord.id.in_(record_ids),
                CommissionRecord.batched_at.is_(None),
                CommissionRecord.status == CommissionStatus.PENDING,
            )
            .values(batch_id=batch_id, batched_at=batched_at)
        )
        return res.rowcount

    async def set_batch_status(
        self,
        batch: PayoutBatch,
        status: PayoutStatus,
        session: AsyncSession,
        *,
        paid_at: datetime | None = None,
    ) -> None:
        """Moves a batch and every record in it to the matching status. Does not commit."""
        batch.status = status
        values: Dict[str, Any] = {"status": CommissionStatus(status.value)}
        if paid_at is not None:
            values["paid_at"] = paid_at
        await session.execute(
            update(CommissionRecord)
            .where(CommissionRecord.batch_id == batch.id)
            .values(**values)
        )

    async def get_batch(self, batch_id: uuid.UUID, session: AsyncSession) -> PayoutBatch:
        batch = await session.get(PayoutBatch, batch_id)
        if not batch:
            raise BatchNotFound("Payout batch not found")
        return batch

    async def batch_records(self, batch_id: uuid.UUID, session: AsyncSession) -> list[CommissionRecord]:
        res = await session.execute(select(CommissionRecord).where(CommissionRecord.batch_id == batch_id))
        return list(res.scalars().all())

    async def list_commissions(
        self,
        owner_id: uuid.UUID,
        session: AsyncSession,
        status: CommissionStatus | None = None,
    ) -> list[CommissionRecord]:
        query = select(CommissionRecord).where(CommissionRecord.owner_id == owner_id)
        if status is not None:
            query = query.where(CommissionRecord.status == status)
        res = await session.execute(query.order_by(CommissionRecord.created_at.desc()))
        return list(res.scalars().all())

    async def list_batches(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID | None = None,
        status: PayoutStatus | None = None,
    ) -> list[PayoutBatch]:
        query = select(PayoutBatch)
        if owner_id is not None:
            query = query.where(PayoutBatch.owner_id == owner_id)
        if status is not None:
            query = query.where(PayoutBatch.status == status)
        res = await session.execute(query.order_by(PayoutBatch.created_at.desc()))
        return list(res.scalars().all())

    async def owners_with_unbatched(self, period_start: datetime, period_end: datetime, session: AsyncSession) -> list[uuid.UUID]:
        res = await session.execute(
            select(CommissionRecord.owner_id)
            .where(
                CommissionRecord.status == CommissionStatus.PENDING,
                CommissionRecord.batched_at.is_(None),
                CommissionRecord.created_at >= period_start,
                CommissionRecord.created_at < period_end,
            )
            .distinct()
        )
        return list(res.scalars().all())

    async def claim_pending_batch(self, batch_id: uuid.UUID, submitted_at: datetime, session: AsyncSession) -> bool:
        """
        pending -> processing as one conditional UPDATE, so two submitters
        cannot both claim the same batch. Does not commit.
        """
        res = await session.execute(
            update(PayoutBatch)
            .where(PayoutBatch.id == batch_id, PayoutBatch.status == PayoutStatus.PENDING)
            .values(status=PayoutStatus.PROCESSING, submitted_at=submitted_at)
        )
        if res.rowcount != 1:
            return False
        await session.execute(
            update(CommissionRecord)
            .where(CommissionRecord.batch_id == batch_id)
            .values(status=CommissionStatus.PROCESSING)
        )
        return True

    async def metrics(self, session: AsyncSession) -> CommissionMetrics:
        res = await session.execute(
            select(
                CommissionRecord.status,
                func.coalesce(func.sum(CommissionRecord.amount_minor), 0),
                func.count(CommissionRecord.id),
            ).group_by(CommissionRecord.status)
        )
        metrics = CommissionMetrics()
        for status, amount, count in res.all():
            setattr(metrics, f"{status.value}_minor", int(amount))
            if status != CommissionStatus.FAILED:
                metrics.total_minor += int(amount)
                metrics.record_count += count
        return metrics
