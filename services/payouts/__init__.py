import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from pydantic import BaseModel
from yookassa import Configuration, Payout, Refund

from config import ENV


class PayoutProviderError(Exception): ...


class TransferResult(BaseModel):
    transfer_id: str
    status: str


class PayoutGateway(ABC):
    @abstractmethod
    async def transfer():
        pass


def minor_to_value(amount_minor: int) -> str:
    return str((Decimal(amount_minor) / 100).quantize(Decimal("0.01")))


class YooKassaPayoutGateway(PayoutGateway):
    """Moves a batch amount to the stylist's payout destination via YooKassa payouts."""

    def __init__(self, env: ENV | None = None, logger: logging.Logger | None = None):
        self.env = env or ENV()
        self.log = logger or logging.getLogger(__name__)
        Configuration.account_id = self.env.YOOKASSA_ACCOUNT_ID
        Configuration.secret_key = self.env.YOOKASSA_SECRET_KEY

    async def transfer(
        self,
        *,
        amount_minor: int,
        currency: str,
        destination: str,
        idempotence_key: str,
        description: str,
        metadata: dict | None = None,
    ) -> TransferResult:
        payload = {
            "amount": {"value": minor_to_value(amount_minor), "currency": currency},
            "payout_token": destination,
            "description": description,
            "metadata": metadata or {},
        }
        try:
            # SDK синхронный, не блокируем event loop
            payout = await asyncio.to_thread(Payout.create, payload, idempotence_key)
        except Exception as e:
            self.log.error("YooKassa payout %s failed: %s", idempotence_key, e)
            raise PayoutProviderError(str(e)) from e

        if payout.status == "canceled":
            details = getattr(payout, "cancellation_details", None)
            reason = getattr(details, "reason", None) or "canceled"
            raise PayoutProviderError(f"Payout {payout.id} canceled: {reason}")

        self.log.info("YooKassa payout %s created with status %s", payout.id, payout.status)
        return TransferResult(transfer_id=payout.id, status=payout.status)


class RefundVerifier(ABC):
    @abstractmethod
    async def is_refunded():
        pass


class YooKassaRefundVerifier(RefundVerifier):
    """Asks YooKassa whether a refund from a webhook really went through."""

    def __init__(self, env: ENV | None = None, logger: logging.Logger | None = None):
        self.env = env or ENV()
        self.log = logger or logging.getLogger(__name__)
        Configuration.account_id = self.env.YOOKASSA_ACCOUNT_ID
        Configuration.secret_key = self.env.YOOKASSA_SECRET_KEY

    async def is_refunded(self, refund_id: str) -> bool:
        refund = await asyncio.to_thread(Refund.find_one, refund_id)
        self.log.info("YooKassa refund %s is %s", refund_id, refund.status)
        return refund.status == "succeeded"


def get_refund_verifier() -> RefundVerifier:
    return YooKassaRefundVerifier()
