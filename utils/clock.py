from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # все DateTime колонки храним как naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)
