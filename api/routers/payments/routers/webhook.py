import logging
import uuid
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.database import get_async_session
from api.models import BookingPayment
from api.routers.payments.schemas import PaymentObject, WebhookAck, YooKassaNotification
from services.affiliate import CommissionLedger, get_commission_ledger
from services.bground.tasks import record_commission as record_commission_task
from services.payouts import RefundVerifier, get_refund_verifier
from utils.effects import best_effort_sync

router = APIRouter()
logger = logging.getLogger(__name__)


async def _booking_id_for(payment: PaymentObject, session: AsyncSession) -> uuid.UUID | None:
    """booking_id из метаданных платежа, для возвратов ищем по id исходного платежа."""
    raw = payment.metadata.get("booking_id")
    if raw:
        return uuid.UUID(str(raw))
    provider_id = payment.payment_id or payment.id
    return await session.scalar(
        select(BookingPayment.booking_id).where(BookingPayment.provider_payment_id == provider_id)
    )


def _retry_later(booking_id: uuid.UUID) -> bool:
    """Передаём запись комиссии в Celery, там она повторяется с ретраями."""
    with best_effort_sync(f"queue commission for booking {booking_id}", logger):
        record_commission_task.delay(str(booking_id))
        return True
    return False


@router.post("/webhook", status_code=200, response_model=WebhookAck)
async def yookassa_webhook(
    notification: YooKassaNotification,
    ledger: CommissionLedger = Depends(get_commission_ledger),
    refunds: RefundVerifier = Depends(get_refund_verifier),
    session: AsyncSession = Depends(get_async_session),
):
    """
    Принимает вебхуки от YooKassa.
    Интересующие события:
    - payment.succeeded: запись комиссии по бронированию. Если запись упала,
      задача уходит в Celery.
    - refund.succeeded: возврат сверяется с YooKassa, затем сторнируется
      ещё не выплаченная комиссия.
    Повторная доставка безопасна: запись комиссии идемпотентна по booking_id.
    """
    logger.info("Received YooKassa webhook: event=%s, object=%s", notification.event, notification.object.id)

    booking_id = None
    try:
        if notification.event not in ("payment.succeeded", "refund.succeeded"):
            return {"status": "ignored"}

        booking_id = await _booking_id_for(notification.object, session)
        if booking_id is None:
            logger.warning("No booking for YooKassa object %s", notification.object.id)
            return {"status": "ignored"}

        if notification.event == "payment.succeeded":
            await ledger.record_commission(booking_id)
            return {"status": "ok"}

        # вебхук не подписан, верим только самому провайдеру
        if not await refunds.is_refunded(notification.object.id):
            logger.warning("Refund %s is not confirmed by YooKassa", notification.object.id)
            return {"status": "ignored"}
        await ledger.record_refund(booking_id)
        return {"status": "ok"}

    except Exception:
        logger.exception("Error processing YooKassa webhook for %s", notification.object.id)
        if notification.event == "payment.succeeded" and booking_id is not None and _retry_later(booking_id):
            return {"status": "queued"}
        # YooKassa требует ответ 200 OK, иначе будет повторять отправку.
        return {"status": "error"}
