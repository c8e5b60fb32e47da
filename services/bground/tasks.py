from __future__ import annotations
from typing import Any, Dict
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from celery import states
from celery.signals import after_setup_logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from api.crud.attribution import AttributionCRUD
from config import Settings, get_env
from logging_config import setup_logging
from services.affiliate import AffiliateError, CommissionLedger
from services.bground import CeleryManager
from utils.clock import utcnow

celery_app = CeleryManager()
logger = logging.getLogger(__name__)


@after_setup_logger.connect
def _setup_worker_logging(**kwargs):
    setup_logging(get_env().LOG_LEVEL)


@asynccontextmanager
async def task_session():
    # каждый asyncio.run живёт в своём loop, пул соединений между задачами не переносим
    engine = create_async_engine(Settings().generate_postgres_url(), poolclass=NullPool)
    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            yield session
    finally:
        await engine.dispose()


def previous_month(now: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the calendar month before `now`."""
    end = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start = (end.replace(year=end.year - 1, month=12) if end.month == 1 else end.replace(month=end.month - 1))
    return start, end


async def cleanup_expired(session: AsyncSession, now: datetime) -> int:
    deleted = await AttributionCRUD().delete_expired(now, session)
    logger.info("Deleted %s expired attributions", deleted)
    return deleted


async def generate_for_previous_month(session: AsyncSession, now: datetime) -> list[str]:
    start, end = previous_month(now)
    batches = await CommissionLedger(session).generate_for_period(start, end)
    logger.info("Generated %s payout batches for %s - %s", len(batches), start.date(), end.date())
    return [str(b.id) for b in batches]


@celery_app.celery_app.task(name="affiliate.cleanup_expired_attributions")
def cleanup_expired_attributions() -> Dict[str, Any]:
    async def _run():
        async with task_session() as session:
            return await cleanup_expired(session, utcnow())

    return {"deleted": asyncio.run(_run())}


@celery_app.celery_app.task(name="affiliate.generate_monthly_payouts")
def generate_monthly_payouts() -> Dict[str, Any]:
    async def _run():
        async with task_session() as session:
            return await generate_for_previous_month(session, utcnow())

    batch_ids = asyncio.run(_run())
    submitted = []
    if get_env().PAYOUT_AUTO_SUBMIT:
        for batch_id in batch_ids:
            submit_payout_batch.delay(batch_id)
            submitted.append(batch_id)
    return {"batches": batch_ids, "submitted": submitted}


@celery_app.celery_app.task(bind=True, max_retries=3, name="affiliate.record_commission")
def record_commission(self, booking_id: str) -> Dict[str, Any]:
    """Запись комиссии, которую вебхук не смог сделать сразу. Идемпотентна, поэтому ретраи безопасны."""
    async def _run():
        async with task_session() as session:
            record = await CommissionLedger(session).record_commission(uuid.UUID(booking_id))
            return str(record.id) if record else None

    try:
        return {"booking_id": booking_id, "commission_id": asyncio.run(_run())}
    except Exception as e:
        logger.exception("record_commission failed for booking %s", booking_id)
        raise self.retry(exc=e, countdown=30)


@celery_app.celery_app.task(bind=True, name="affiliate.submit_payout_batch")
def submit_payout_batch(self, batch_id: str) -> Dict[str, Any]:
    async def _run():
        async with task_session() as session:
            batch = await CommissionLedger(session).submit_payout_batch(uuid.UUID(batch_id))
            return batch.status.value

    try:
        return {"batch_id": batch_id, "status": asyncio.run(_run())}
    except AffiliateError as e:
        # провайдерские ошибки терминальны, пакет уже помечен failed
        self.update_state(state=states.FAILURE, meta={"error": str(e), "reason": e.kind.value})
        raise
