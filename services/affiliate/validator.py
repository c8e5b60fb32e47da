import logging
import uuid
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.affiliate_code import AffiliateCodeService
from api.models import AffiliateCode
from utils.clock import Clock, utcnow
from .errors import ErrorKind


class ValidationResult(BaseModel):
    success: bool
    error: ErrorKind | None = None
    code: str | None = None
    code_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None
    owner_name: str | None = None
    commission_rate: Decimal | None = None

    @classmethod
    def failed(cls, error: ErrorKind) -> "ValidationResult":
        return cls(success=False, error=error)

    @classmethod
    def from_code(cls, code: AffiliateCode) -> "ValidationResult":
        return cls(
            success=True,
            code=code.code,
            code_id=code.id,
            owner_id=code.owner_id,
            owner_name=code.owner.full_name,
            commission_rate=code.commission_rate,
        )


class CodeValidator:
    """
    Decides whether a code string refers to a currently usable affiliate code.
    Failures are returned, never raised.
    """

    def __init__(
        self,
        session: AsyncSession,
        codes: AffiliateCodeService | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
    ):
        self.session = session
        self.codes = codes or AffiliateCodeService()
        self.clock = clock
        self.log = logger or logging.getLogger(__name__)

    async def validate(self, code: str | None) -> ValidationResult:
        if not code or not code.strip():
            return ValidationResult.failed(ErrorKind.EMPTY_CODE)

        record = await self.codes.get_by_code(code, self.session)
        if record is None:
            self.log.debug("Affiliate code %r not found", code)
            return ValidationResult.failed(ErrorKind.NOT_FOUND)

        if record.owner is None or not record.owner.can_own_codes:
            self.log.info("Affiliate code %s has an invalid owner", record.code)
            return ValidationResult.failed(ErrorKind.OWNER_INVALID)

        if not record.is_active:
            return ValidationResult.failed(ErrorKind.INACTIVE)

        if record.expires_at is not None and record.expires_at <= self.clock():
            return ValidationResult.failed(ErrorKind.EXPIRED)

        return ValidationResult.from_code(record)
