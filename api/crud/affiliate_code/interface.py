from __future__ import annotations
from abc import ABC, abstractmethod

class AffiliateCodeInterface(ABC):
    @abstractmethod
    async def get_by_code():
        pass

    @abstractmethod
    async def get_code():
        pass

    @abstractmethod
    async def get_active_for_owner():
        pass

    @abstractmethod
    async def list_codes():
        pass

    @abstractmethod
    async def analytics():
        pass

    @abstractmethod
    async def create_code():
        pass

    @abstractmethod
    async def set_active():
        pass

    @abstractmethod
    async def set_expiry():
        pass

    @abstractmethod
    async def increment_clicks():
        pass

    @abstractmethod
    async def increment_conversions():
        pass

    @abstractmethod
    async def decrement_conversions():
        pass
