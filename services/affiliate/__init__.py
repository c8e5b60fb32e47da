from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from api.database import get_async_session
from .attribution import (
    AttributionCapture,
    AttributionStore,
    AttributionTransfer,
    ResolvedAttribution,
    TransferResult,
)
from .checkout import CartItem, CheckoutService, DiscountCalculator
from .errors import AffiliateError, ErrorKind
from .guard import UsageRightsGuard
from .ledger import CommissionLedger
from .token import CookieTokenStorage, TokenCodec
from .validator import CodeValidator, ValidationResult


def get_token_storage(request: Request, response: Response) -> CookieTokenStorage:
    return CookieTokenStorage(request, response)


def get_code_validator(session: AsyncSession = Depends(get_async_session)) -> CodeValidator:
    return CodeValidator(session)


def get_attribution_store(
    session: AsyncSession = Depends(get_async_session),
    storage: CookieTokenStorage = Depends(get_token_storage),
) -> AttributionStore:
    return AttributionStore.build(session, storage)


def get_attribution_transfer(
    session: AsyncSession = Depends(get_async_session),
    storage: CookieTokenStorage = Depends(get_token_storage),
) -> AttributionTransfer:
    return AttributionTransfer(session, storage)


def get_attribution_capture(
    session: AsyncSession = Depends(get_async_session),
    storage: CookieTokenStorage = Depends(get_token_storage),
) -> AttributionCapture:
    return AttributionCapture(session, storage)


def get_checkout_service(
    session: AsyncSession = Depends(get_async_session),
    storage: CookieTokenStorage = Depends(get_token_storage),
) -> CheckoutService:
    return CheckoutService(session, storage)


def get_commission_ledger(session: AsyncSession = Depends(get_async_session)) -> CommissionLedger:
    return CommissionLedger(session)


__all__ = [
    "AffiliateError",
    "AttributionCapture",
    "AttributionStore",
    "AttributionTransfer",
    "CartItem",
    "CheckoutService",
    "CodeValidator",
    "CommissionLedger",
    "CookieTokenStorage",
    "DiscountCalculator",
    "ErrorKind",
    "ResolvedAttribution",
    "TokenCodec",
    "TransferResult",
    "UsageRightsGuard",
    "ValidationResult",
    "get_attribution_capture",
    "get_attribution_store",
    "get_attribution_transfer",
    "get_checkout_service",
    "get_code_validator",
    "get_commission_ledger",
    "get_token_storage",
]
