import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.affiliate_code import AffiliateCodeService, BusinessRuleError, CodeNotFound
from api.crud.affiliate_code.schema import (
    AffiliateCodeAnalytics,
    AffiliateCodeCreate,
    AffiliateCodeExpiryUpdate,
    AffiliateCodeListItem,
    AffiliateCodeRead,
)
from api.database import get_session

router = APIRouter()


def get_code_service() -> AffiliateCodeService:
    return AffiliateCodeService()


@router.post("", response_model=AffiliateCodeRead, status_code=201, summary="Создать партнёрский код стилиста")
async def create_code(
    dto: AffiliateCodeCreate,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await service.create_code(dto, session)
    except BusinessRuleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=list[AffiliateCodeListItem], summary="Все партнёрские коды")
async def list_codes(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    return await service.list_codes(session, limit=limit, offset=offset)


@router.get("/by-stylist/{owner_id}", response_model=AffiliateCodeRead, summary="Активный код стилиста")
async def get_code_by_stylist(
    owner_id: uuid.UUID,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    found = await service.get_active_for_owner(owner_id, session)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stylist has no active affiliate code")
    return found


@router.get("/{code_id}/analytics", response_model=AffiliateCodeAnalytics, summary="Аналитика по коду")
async def code_analytics(
    code_id: uuid.UUID,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await service.analytics(code_id, session)
    except CodeNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{code}", response_model=AffiliateCodeRead, summary="Получить код по строке")
async def get_code(
    code: str,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    found = await service.get_by_code(code, session)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Affiliate code not found")
    return found


async def _set_active(code_id: uuid.UUID, is_active: bool, service: AffiliateCodeService, session: AsyncSession):
    try:
        return await service.set_active(code_id, is_active, session)
    except CodeNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.patch("/{code_id}/deactivate", response_model=AffiliateCodeRead, summary="Деактивировать код")
async def deactivate_code(
    code_id: uuid.UUID,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    return await _set_active(code_id, False, service, session)


@router.patch("/{code_id}/reactivate", response_model=AffiliateCodeRead, summary="Снова активировать код")
async def reactivate_code(
    code_id: uuid.UUID,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    return await _set_active(code_id, True, service, session)


@router.patch("/{code_id}/expiry", response_model=AffiliateCodeRead, summary="Изменить срок действия кода")
async def set_code_expiry(
    code_id: uuid.UUID,
    dto: AffiliateCodeExpiryUpdate,
    service: AffiliateCodeService = Depends(get_code_service),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await service.set_expiry(code_id, dto.expires_at, session)
    except CodeNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
