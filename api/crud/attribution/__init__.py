import uuid
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.models import AffiliateCode, Attribution
from .interface import AttributionInterface


class AttributionCRUD(AttributionInterface):
    async def latest_unconverted_for_user(self, user_id: uuid.UUID, session: AsyncSession) -> Attribution | None:
        """Most recent open attribution of a user, with its code and the code owner loaded."""
        res = await session.execute(
            select(Attribution)
            .where(
                Attribution.user_id == user_id,
                Attribution.converted.is_(False),
            )
            .options(selectinload(Attribution.affiliate_code).selectinload(AffiliateCode.owner))
            .order_by(Attribution.attributed_at.desc())
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def find_unconverted(self, user_id: uuid.UUID, code_id: uuid.UUID, session: AsyncSession) -> Attribution | None:
        res = await session.execute(
            select(Attribution).where(
                Attribution.user_id == user_id,
                Attribution.code_id == code_id,
                Attribution.converted.is_(False),
            )
        )
        return res.scalar_one_or_none()

    async def create(
        self,
        *,
        code: AffiliateCode,
        user_id: uuid.UUID,
        attributed_at: datetime,
        expires_at: datetime,
        session: AsyncSession,
        visitor_session: str | None = None,
        original_user_id: uuid.UUID | None = None,
    ) -> Attribution:
        record = Attribution(
            code_id=code.id,
            owner_id=code.owner_id,
            user_id=user_id,
            visitor_session=visitor_session,
            original_user_id=original_user_id,
            attributed_at=attributed_at,
            expires_at=expires_at,
            converted=False,
        )
        session.add(record)
        await session.flush()
        return record

    async def delete(self, attribution_id: uuid.UUID, session: AsyncSession) -> None:
        await session.execute(delete(Attribution).where(Attribution.id == attribution_id))

    async def mark_converted(
        self,
        *,
        user_id: uuid.UUID,
        owner_id: uuid.UUID,
        booking_id: uuid.UUID,
        converted_at: datetime,
        session: AsyncSession,
    ) -> Attribution | None:
        """
        Flags the user's open attribution to `owner_id` as converted.
        Returns the converted record, or None when there was nothing open.
        """
        res = await session.execute(
            select(Attribution)
            .where(
                Attribution.user_id == user_id,
                Attribution.owner_id == owner_id,
                Attribution.converted.is_(False),
            )
            .order_by(Attribution.attributed_at.desc())
            .limit(1)
        )
        record = res.scalar_one_or_none()
        if record is None:
            return None
        await session.execute(
            update(Attribution)
            .where(Attribution.id == record.id)
            .values(converted=True, converted_at=converted_at, booking_id=booking_id)
        )
        return record

    async def unmark_converted(self, booking_id: uuid.UUID, session: AsyncSession) -> Attribution | None:
        """Reopens the attribution a refunded booking had converted. Returns it, or None."""
        record = await session.scalar(
            select(Attribution).where(
                Attribution.booking_id == booking_id,
                Attribution.converted.is_(True),
            )
        )
        if record is None:
            return None
        await session.execute(
            update(Attribution)
            .where(Attribution.id == record.id)
            .values(converted=False, converted_at=None, booking_id=None)
        )
        return record

    async def open_attribution_id(self, user_id: uuid.UUID, owner_id: uuid.UUID, session: AsyncSession) -> uuid.UUID | None:
        return await session.scalar(
            select(Attribution.id)
            .where(
                Attribution.user_id == user_id,
                Attribution.owner_id == owner_id,
                Attribution.converted.is_(False),
            )
            .order_by(Attribution.attributed_at.desc())
            .limit(1)
        )

    async def has_converted_for_owner(self, user_id: uuid.UUID, owner_id: uuid.UUID, session: AsyncSession) -> bool:
        found = await session.scalar(
            select(Attribution.id)
            .where(
                Attribution.user_id == user_id,
                Attribution.owner_id == owner_id,
                Attribution.converted.is_(True),
            )
            .limit(1)
        )
        return found is not None

    async def delete_expired(self, now: datetime, session: AsyncSession) -> int:
        """Removes unconverted attributions past their window. Converted ones are history and stay."""
        res = await session.execute(
            delete(Attribution).where(
                Attribution.converted.is_(False),
                Attribution.expires_at < now,
            )
        )
        await session.commit()
        return res.rowcount or 0
