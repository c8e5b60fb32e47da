from __future__ import annotations
from abc import ABC, abstractmethod

class AttributionInterface(ABC):
    @abstractmethod
    async def latest_unconverted_for_user():
        pass

    @abstractmethod
    async def find_unconverted():
        pass

    @abstractmethod
    async def create():
        pass

    @abstractmethod
    async def delete():
        pass

    @abstractmethod
    async def mark_converted():
        pass

    @abstractmethod
    async def unmark_converted():
        pass

    @abstractmethod
    async def open_attribution_id():
        pass

    @abstractmethod
    async def has_converted_for_owner():
        pass

    @abstractmethod
    async def delete_expired():
        pass
