import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.attribution import AttributionCRUD
from utils.clock import Clock, utcnow
from .attribution import AttributionStore, ResolvedAttribution
from .errors import ErrorKind
from .guard import UsageRightsGuard
from .token import TokenCodec, TokenStorage
from .validator import CodeValidator

NO_ELIGIBLE_ITEMS = "no_eligible_items"
ALREADY_REDEEMED = "already_redeemed"

# причины, которые показываем покупателю при ручном вводе кода
REJECTION_CLASSES = {
    ErrorKind.EXPIRED: "expired",
    ErrorKind.INACTIVE: "inactive",
    ErrorKind.SELF_REFERRAL: "self_referral",
}
REJECTION_MESSAGES = {
    "expired": "This code has expired.",
    "inactive": "This code is no longer active.",
    "invalid": "This code is not valid.",
    "self_referral": "You cannot use your own code.",
}


class CartItem(BaseModel):
    item_id: str
    owner_id: uuid.UUID
    unit_price_minor: int = Field(ge=0)
    qty: int = Field(default=1, ge=0)


class DiscountResult(BaseModel):
    applicable: bool
    reason: str | None = None
    code: str | None = None
    owner_id: uuid.UUID | None = None
    owner_name: str | None = None
    eligible_item_ids: list[str] = []
    eligible_subtotal_minor: int = 0
    discount_minor: int = 0
    commission_rate: Decimal | None = None


class CheckoutDiscount(DiscountResult):
    auto_applicable: bool = False


class ManualCodeResult(BaseModel):
    accepted: bool
    reason: str | None = None
    message: str | None = None
    discount: DiscountResult | None = None


def discount_for(subtotal_minor: int, rate: Decimal) -> int:
    """Percentage of a subtotal in minor units, half-up, never above the subtotal."""
    rate = min(max(Decimal(rate), Decimal(0)), Decimal(100))
    amount = (Decimal(subtotal_minor) * rate / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return min(int(amount), subtotal_minor)


class DiscountCalculator:
    def __init__(self, validator: CodeValidator, logger: logging.Logger | None = None):
        self.validator = validator
        self.log = logger or logging.getLogger(__name__)

    async def compute_discount(self, cart_items: list[CartItem], attribution: ResolvedAttribution) -> DiscountResult:
        # ставку берём из живой записи кода, а не из атрибуции
        result = await self.validator.validate(attribution.code)
        if not result.success:
            return DiscountResult(applicable=False, reason=result.error.value, code=attribution.code)

        eligible = [item for item in cart_items if item.owner_id == result.owner_id]
        base = dict(
            code=result.code,
            owner_id=result.owner_id,
            owner_name=result.owner_name,
            commission_rate=result.commission_rate,
        )
        if not eligible:
            return DiscountResult(applicable=False, reason=NO_ELIGIBLE_ITEMS, **base)

        subtotal = sum(item.unit_price_minor * item.qty for item in eligible)
        item_ids = list(dict.fromkeys(item.item_id for item in eligible))
        return DiscountResult(
            applicable=True,
            eligible_item_ids=item_ids,
            eligible_subtotal_minor=subtotal,
            discount_minor=discount_for(subtotal, result.commission_rate),
            **base,
        )


class CheckoutService:
    def __init__(
        self,
        session: AsyncSession,
        storage: TokenStorage,
        validator: CodeValidator | None = None,
        store: AttributionStore | None = None,
        attributions: AttributionCRUD | None = None,
        codec: TokenCodec | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
    ):
        self.session = session
        self.log = logger or logging.getLogger(__name__)
        self.validator = validator or CodeValidator(session, clock=clock, logger=self.log)
        self.store = store or AttributionStore.build(
            session, storage, validator=self.validator, codec=codec, clock=clock, logger=self.log,
        )
        self.guard = UsageRightsGuard(self.validator, self.log)
        self.calculator = DiscountCalculator(self.validator, self.log)
        self.attributions = attributions or AttributionCRUD()
        self.clock = clock

    async def check_discount(self, subject: uuid.UUID | None, cart_items: list[CartItem]) -> CheckoutDiscount:
        """
        Discount from the visitor's attribution, if any. Ineligibility is
        reported as `applicable=False` and never blocks checkout.
        """
        attribution = await self.store.get_attribution(subject)
        if attribution is None:
            return CheckoutDiscount(applicable=False)

        decision = await self.guard.can_redeem(subject, attribution)
        if not decision.allowed:
            return CheckoutDiscount(applicable=False, reason=decision.reason.value, code=attribution.code)

        discount = await self.calculator.compute_discount(cart_items, attribution)
        if not discount.applicable:
            return CheckoutDiscount(**discount.model_dump())

        if subject is not None and await self.attributions.has_converted_for_owner(subject, discount.owner_id, self.session):
            return CheckoutDiscount(**{**discount.model_dump(), "reason": ALREADY_REDEEMED}, auto_applicable=False)

        return CheckoutDiscount(**discount.model_dump(), auto_applicable=True)

    async def apply_manual_code(
        self,
        code: str,
        cart_items: list[CartItem],
        subject: uuid.UUID | None = None,
    ) -> ManualCodeResult:
        result = await self.validator.validate(code)
        if not result.success:
            return self._reject(REJECTION_CLASSES.get(result.error, "invalid"))

        now = self.clock()
        attribution = ResolvedAttribution(
            source="manual",
            code=result.code,
            code_id=result.code_id,
            owner_id=result.owner_id,
            owner_name=result.owner_name,
            attributed_at=now,
            expires_at=now,
        )
        decision = await self.guard.can_redeem(subject, attribution)
        if not decision.allowed:
            return self._reject(REJECTION_CLASSES.get(decision.reason, "invalid"))

        discount = await self.calculator.compute_discount(cart_items, attribution)
        if not discount.applicable:
            return ManualCodeResult(
                accepted=False,
                reason=NO_ELIGIBLE_ITEMS,
                message=f"Code {result.code} only applies to services from {result.owner_name}.",
                discount=discount,
            )
        return ManualCodeResult(accepted=True, discount=discount)

    def _reject(self, reason: str) -> ManualCodeResult:
        return ManualCodeResult(accepted=False, reason=reason, message=REJECTION_MESSAGES[reason])
