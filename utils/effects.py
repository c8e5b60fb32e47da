import logging
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def best_effort(description: str, logger: logging.Logger | None = None, rollback: AsyncSession | None = None):
    """
    Run an opportunistic side effect whose failure must never fail the caller.

        async with best_effort("delete stale attribution", self.log, rollback=session):
            await self.attributions.delete(record.id, session)
            await session.commit()

    The exception is logged with its traceback and discarded. When `rollback`
    is given, the session is rolled back so the caller can keep using it.
    """
    log = logger or logging.getLogger(__name__)
    try:
        yield
    except Exception:
        log.warning("Best-effort step failed: %s", description, exc_info=True)
        if rollback is not None:
            try:
                await rollback.rollback()
            except Exception:
                log.error("Rollback after failed best-effort step failed: %s", description, exc_info=True)


@contextmanager
def best_effort_sync(description: str, logger: logging.Logger | None = None):
    log = logger or logging.getLogger(__name__)
    try:
        yield
    except Exception:
        log.warning("Best-effort step failed: %s", description, exc_info=True)
