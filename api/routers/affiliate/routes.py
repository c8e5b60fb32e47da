import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, status

from api.security import get_subject, get_visitor_session
from services.affiliate import (
    AttributionCapture,
    AttributionStore,
    AttributionTransfer,
    CheckoutService,
    CodeValidator,
    CookieTokenStorage,
    ResolvedAttribution,
    TransferResult,
    ValidationResult,
    get_attribution_capture,
    get_attribution_store,
    get_attribution_transfer,
    get_checkout_service,
    get_code_validator,
    get_token_storage,
)
from services.affiliate.checkout import CheckoutDiscount, ManualCodeResult
from utils.effects import best_effort_sync
from .schemas import CaptureIn, CartIn, CodeIn, ManualCodeIn

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/codes/validate", response_model=ValidationResult, summary="Проверка партнёрского кода")
async def validate_code(dto: CodeIn, validator: CodeValidator = Depends(get_code_validator)):
    return await validator.validate(dto.code)


@router.post("/attribution", response_model=ValidationResult, summary="Переход по партнёрскому коду")
async def capture_attribution(
    dto: CaptureIn,
    visitor_session: str | None = Depends(get_visitor_session),
    capture: AttributionCapture = Depends(get_attribution_capture),
):
    return await capture.capture(dto.code, original_user_id=dto.original_user_id, visitor_session=visitor_session)


@router.get("/attribution", response_model=ResolvedAttribution | None, summary="Текущая атрибуция посетителя")
async def get_attribution(
    subject: uuid.UUID | None = Depends(get_subject),
    store: AttributionStore = Depends(get_attribution_store),
):
    return await store.get_attribution(subject)


@router.post("/attribution/transfer", response_model=TransferResult, summary="Перенос атрибуции после входа")
async def transfer_attribution(
    subject: uuid.UUID | None = Depends(get_subject),
    visitor_session: str | None = Depends(get_visitor_session),
    transfer: AttributionTransfer = Depends(get_attribution_transfer),
    storage: CookieTokenStorage = Depends(get_token_storage),
):
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id is required")
    result = await transfer.transfer(subject, visitor_session=visitor_session)
    if result.should_clear_token:
        with best_effort_sync("clear attribution cookie after transfer", logger):
            storage.clear()
    return result


@router.post("/checkout/discount", response_model=CheckoutDiscount, summary="Скидка по атрибуции для корзины")
async def checkout_discount(
    dto: CartIn,
    subject: uuid.UUID | None = Depends(get_subject),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return await checkout.check_discount(subject, dto.items)


@router.post("/checkout/manual-code", response_model=ManualCodeResult, summary="Ручной ввод кода на оформлении")
async def checkout_manual_code(
    dto: ManualCodeIn,
    subject: uuid.UUID | None = Depends(get_subject),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    result = await checkout.apply_manual_code(dto.code, dto.items, subject=subject)
    if not result.accepted:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"reason": result.reason, "message": result.message})
    return result
