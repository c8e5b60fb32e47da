from __future__ import annotations
from abc import ABC, abstractmethod

class CommissionInterface(ABC):
    @abstractmethod
    async def get_by_booking():
        pass

    @abstractmethod
    async def insert_or_get():
        pass

    @abstractmethod
    async def select_unbatched():
        pass

    @abstractmethod
    async def mark_batched():
        pass

    @abstractmethod
    async def set_batch_status():
        pass

    @abstractmethod
    async def get_batch():
        pass

    @abstractmethod
    async def claim_pending_batch():
        pass

    @abstractmethod
    async def list_commissions():
        pass

    @abstractmethod
    async def list_batches():
        pass

    @abstractmethod
    async def metrics():
        pass
