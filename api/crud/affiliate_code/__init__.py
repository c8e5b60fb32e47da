import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from api.models import AffiliateCode, Attribution, Profile
from utils.clock import utcnow
from utils.referral import CodeGenerator
from .interface import AffiliateCodeInterface
from .schema import (
    AffiliateCodeAnalytics,
    AffiliateCodeCreate,
    AffiliateCodeListItem,
    AffiliateCodeRead,
    AttributionRead,
)


class CodeNotFound(Exception): ...
class BusinessRuleError(Exception): ...


def normalize_code(code: str) -> str:
    return code.strip().upper()


class AffiliateCodeService(AffiliateCodeInterface):
    def __init__(self, generator: CodeGenerator | None = None):
        self.generator = generator or CodeGenerator()

    async def get_by_code(self, code: str, session: AsyncSession) -> AffiliateCode | None:
        """Looks a code up by its normalized (uppercase) form, owner preloaded."""
        res = await session.execute(
            select(AffiliateCode)
            .where(AffiliateCode.code == normalize_code(code))
            .options(selectinload(AffiliateCode.owner))
        )
        return res.scalar_one_or_none()

    async def get_code(self, code_id: uuid.UUID, session: AsyncSession) -> AffiliateCode:
        affiliate_code = await session.get(AffiliateCode, code_id)
        if not affiliate_code:
            raise CodeNotFound("Affiliate code not found")
        return affiliate_code

    async def get_active_for_owner(self, owner_id: uuid.UUID, session: AsyncSession) -> AffiliateCode | None:
        return await session.scalar(
            select(AffiliateCode).where(
                AffiliateCode.owner_id == owner_id,
                AffiliateCode.is_active.is_(True),
            )
        )

    async def list_codes(self, session: AsyncSession, limit: int = 50, offset: int = 0) -> list[AffiliateCodeListItem]:
        """Newest first, with the stylist's name for the admin list."""
        res = await session.execute(
            select(AffiliateCode)
            .options(selectinload(AffiliateCode.owner))
            .order_by(AffiliateCode.created_at.desc(), AffiliateCode.code)
            .limit(limit)
            .offset(offset)
        )
        return [
            AffiliateCodeListItem.model_validate(code).model_copy(update={"stylist_name": code.owner.full_name})
            for code in res.scalars().all()
        ]

    async def analytics(self, code_id: uuid.UUID, session: AsyncSession, recent: int = 100) -> AffiliateCodeAnalytics:
        affiliate_code = await self.get_code(code_id, session)
        # счётчики меняются UPDATE-ами в обход identity map
        await session.refresh(affiliate_code)
        res = await session.execute(
            select(Attribution)
            .where(Attribution.code_id == code_id)
            .order_by(Attribution.attributed_at.desc())
            .limit(recent)
        )
        rate = 0.0
        if affiliate_code.click_count > 0:
            rate = round(affiliate_code.conversion_count / affiliate_code.click_count * 100, 1)
        return AffiliateCodeAnalytics(
            code=AffiliateCodeRead.model_validate(affiliate_code),
            conversion_rate=rate,
            recent_attributions=[AttributionRead.model_validate(a) for a in res.scalars().all()],
        )

    async def create_code(self, dto: AffiliateCodeCreate, session: AsyncSession) -> AffiliateCode:
        """
        Creates a code for a stylist. One active code per stylist; the code
        string is either the requested one or generated from the stylist's name.
        """
        owner = await session.get(Profile, dto.owner_id)
        if not owner:
            raise BusinessRuleError(f"Profile {dto.owner_id} not found.")
        if not owner.can_own_codes:
            raise BusinessRuleError("Only active stylists can own affiliate codes.")

        active = await session.scalar(
            select(AffiliateCode.id).where(
                AffiliateCode.owner_id == owner.id,
                AffiliateCode.is_active.is_(True),
            )
        )
        if active:
            raise BusinessRuleError("Stylist already has an active affiliate code.")

        year = utcnow().year
        candidates = [normalize_code(dto.code)] if dto.code else self.generator.candidates(owner.full_name, year)
        taken = await self._taken_codes(candidates, session)
        if dto.code:
            code = candidates[0]
            if code in taken:
                raise BusinessRuleError(f"Code {code} is already taken.")
        else:
            try:
                code = self.generator.pick(candidates, taken)
            except ValueError as e:
                raise BusinessRuleError(str(e))

        new_code = AffiliateCode(
            code=code,
            owner_id=owner.id,
            commission_rate=dto.commission_rate,
            expires_at=dto.expires_at,
            is_active=True,
        )
        session.add(new_code)
        try:
            await session.commit()
        except IntegrityError:
            # тот же код успели создать параллельно
            await session.rollback()
            raise BusinessRuleError(f"Code {code} is already taken.")
        await session.refresh(new_code)
        return new_code

    async def _taken_codes(self, candidates: list[str], session: AsyncSession) -> set[str]:
        res = await session.execute(select(AffiliateCode.code).where(AffiliateCode.code.in_(candidates)))
        return set(res.scalars().all())

    async def set_active(self, code_id: uuid.UUID, is_active: bool, session: AsyncSession) -> AffiliateCode:
        affiliate_code = await self.get_code(code_id, session)
        affiliate_code.is_active = is_active
        await session.commit()
        await session.refresh(affiliate_code)
        return affiliate_code

    async def set_expiry(self, code_id: uuid.UUID, expires_at: datetime | None, session: AsyncSession) -> AffiliateCode:
        affiliate_code = await self.get_code(code_id, session)
        affiliate_code.expires_at = expires_at
        await session.commit()
        await session.refresh(affiliate_code)
        return affiliate_code

    async def increment_clicks(self, code_id: uuid.UUID, session: AsyncSession) -> None:
        await session.execute(
            update(AffiliateCode)
            .where(AffiliateCode.id == code_id)
            .values(click_count=AffiliateCode.click_count + 1)
        )

    async def increment_conversions(self, code_id: uuid.UUID, session: AsyncSession) -> None:
        await session.execute(
            update(AffiliateCode)
            .where(AffiliateCode.id == code_id)
            .values(conversion_count=AffiliateCode.conversion_count + 1)
        )

    async def decrement_conversions(self, code_id: uuid.UUID, session: AsyncSession) -> None:
        await session.execute(
            update(AffiliateCode)
            .where(AffiliateCode.id == code_id, AffiliateCode.conversion_count > 0)
            .values(conversion_count=AffiliateCode.conversion_count - 1)
        )
