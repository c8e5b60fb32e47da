import logging
import uuid

from pydantic import BaseModel

from .attribution import ResolvedAttribution
from .errors import ErrorKind
from .validator import CodeValidator


class RedeemDecision(BaseModel):
    allowed: bool
    reason: ErrorKind | None = None


class UsageRightsGuard:
    """Only the visitor the code was given to may redeem it, and never the code owner."""

    def __init__(self, validator: CodeValidator, logger: logging.Logger | None = None):
        self.validator = validator
        self.log = logger or logging.getLogger(__name__)

    async def can_redeem(self, subject: uuid.UUID | None, attribution: ResolvedAttribution) -> RedeemDecision:
        if attribution.original_user_id is not None and attribution.original_user_id != subject:
            self.log.info(
                "Attribution %s was issued to %s, not %s",
                attribution.code, attribution.original_user_id, subject,
            )
            return RedeemDecision(allowed=False, reason=ErrorKind.NOT_ORIGINAL_RECIPIENT)

        result = await self.validator.validate(attribution.code)
        if not result.success:
            return RedeemDecision(allowed=False, reason=result.error)

        if subject is not None and result.owner_id == subject:
            self.log.info("Self-referral blocked for %s on %s", subject, attribution.code)
            return RedeemDecision(allowed=False, reason=ErrorKind.SELF_REFERRAL)

        return RedeemDecision(allowed=True)
