import asyncio
import logging

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import api.models  # noqa: F401  registers every table on Base.metadata
from api.database import Base


@pytest.fixture
def run_db(tmp_path):
    """
    Runs `scenario(session_factory)` against a fresh SQLite database file.

        def test_something(run_db):
            async def scenario(sessions):
                async with sessions() as session:
                    ...
            run_db(scenario)
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'affiliate.db'}"

    def _run(scenario):
        async def _main():
            engine = create_async_engine(url)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            sessions = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
            try:
                return await scenario(sessions)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture
def quiet_logger():
    logger = logging.getLogger("tests.affiliate")
    logger.setLevel(logging.DEBUG)
    return logger
