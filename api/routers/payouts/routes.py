import uuid
from fastapi import APIRouter, Depends, HTTPException, status, Query

from api.crud.commission import BatchNotFound
from api.models import CommissionStatus, PayoutStatus
from services.affiliate import AffiliateError, CommissionLedger, ErrorKind, get_commission_ledger
from .schemas import CommissionMetrics, CommissionRead, EarningsSummary, PayoutBatchCreate, PayoutBatchRead

router = APIRouter()

ERROR_STATUS = {
    ErrorKind.NOTHING_TO_PAY: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_PENDING: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FAILED: status.HTTP_409_CONFLICT,
    ErrorKind.OWNER_NOT_PAYABLE: status.HTTP_409_CONFLICT,
    ErrorKind.PERSISTENCE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.PROVIDER_TRANSFER_FAILED: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(e: AffiliateError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(e.kind, status.HTTP_400_BAD_REQUEST),
        detail={"reason": e.kind.value, "message": str(e)},
    )


@router.post("/commissions/{booking_id}", response_model=CommissionRead | None, summary="Записать комиссию по бронированию")
async def record_commission(booking_id: uuid.UUID, ledger: CommissionLedger = Depends(get_commission_ledger)):
    return await ledger.record_commission(booking_id)


@router.post("/commissions/{booking_id}/reverse", response_model=CommissionRead | None, summary="Сторнировать комиссию после возврата")
async def reverse_commission(booking_id: uuid.UUID, ledger: CommissionLedger = Depends(get_commission_ledger)):
    return await ledger.reverse_commission(booking_id)


@router.get("/commissions", response_model=list[CommissionRead], summary="Комиссии стилиста")
async def list_commissions(
    owner_id: uuid.UUID = Query(..., description="Владелец кода"),
    status: CommissionStatus | None = Query(None, description="Статус для фильтрации"),
    ledger: CommissionLedger = Depends(get_commission_ledger),
):
    return await ledger.commissions.list_commissions(owner_id, ledger.session, status=status)


@router.post("/batches", response_model=PayoutBatchRead, status_code=201, summary="Сформировать пакет выплаты")
async def generate_batch(dto: PayoutBatchCreate, ledger: CommissionLedger = Depends(get_commission_ledger)):
    try:
        return await ledger.generate_payout_batch(dto.owner_id, dto.period_start, dto.period_end)
    except AffiliateError as e:
        raise _http_error(e)


@router.get("/batches", response_model=list[PayoutBatchRead], summary="Список пакетов выплат")
async def list_batches(
    owner_id: uuid.UUID | None = Query(None),
    status: PayoutStatus | None = Query(None),
    ledger: CommissionLedger = Depends(get_commission_ledger),
):
    return await ledger.commissions.list_batches(ledger.session, owner_id=owner_id, status=status)


@router.post("/batches/{batch_id}/submit", response_model=PayoutBatchRead, summary="Отправить пакет провайдеру")
async def submit_batch(batch_id: uuid.UUID, ledger: CommissionLedger = Depends(get_commission_ledger)):
    try:
        return await ledger.submit_payout_batch(batch_id)
    except BatchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AffiliateError as e:
        raise _http_error(e)


@router.post("/batches/{batch_id}/reset", response_model=PayoutBatchRead, summary="Вернуть неудачный пакет в ожидание")
async def reset_batch(batch_id: uuid.UUID, ledger: CommissionLedger = Depends(get_commission_ledger)):
    try:
        return await ledger.reset_failed_batch(batch_id)
    except BatchNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AffiliateError as e:
        raise _http_error(e)


@router.get("/earnings/{owner_id}", response_model=EarningsSummary, summary="Сводка заработка стилиста")
async def earnings(owner_id: uuid.UUID, ledger: CommissionLedger = Depends(get_commission_ledger)):
    return await ledger.earnings_summary(owner_id)


@router.get("/metrics", response_model=CommissionMetrics, summary="Сводка комиссий по платформе")
async def commission_metrics(ledger: CommissionLedger = Depends(get_commission_ledger)):
    return await ledger.commissions.metrics(ledger.session)
