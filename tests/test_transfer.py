from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from api.crud.attribution import AttributionCRUD
from api.models import Attribution
from services.affiliate import AttributionTransfer, TokenCodec
from services.affiliate.token import AttributionToken
from tests.factories import FixedClock, MemoryTokenStorage, T0, add_attribution, add_code, add_profile, add_stylist

CODEC = TokenCodec("test-secret")
NOW = T0 + timedelta(days=1)


def token_for(code: str, **kwargs) -> str:
    return CODEC.encode(AttributionToken(code=code, attributed_at=T0, expires_at=T0 + timedelta(days=30), **kwargs))


async def rows_for(session, user_id) -> list[Attribution]:
    res = await session.execute(select(Attribution).where(Attribution.user_id == user_id))
    return list(res.scalars().all())


def test_no_token_is_a_no_op(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            customer = await add_profile(session, "Ingrid")
            result = await AttributionTransfer(session, MemoryTokenStorage(), codec=CODEC, clock=FixedClock(NOW)).transfer(customer.id)
            assert (result.migrated, result.should_clear_token) == (False, False)

    run_db(scenario)


def test_broken_or_invalid_token_asks_to_clear(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            await add_code(session, stylist, "OFF2026", is_active=False)

            for raw in ("junk", token_for("OFF2026"), token_for("MISSING")):
                transfer = AttributionTransfer(session, MemoryTokenStorage(raw), codec=CODEC, clock=FixedClock(NOW))
                result = await transfer.transfer(customer.id)
                assert (result.migrated, result.should_clear_token) == (False, True)

            assert await rows_for(session, customer.id) == []

    run_db(scenario)


def test_transfer_twice_creates_one_record(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            code = await add_code(session, stylist)
            raw = token_for("SOMMER20", original_user_id=customer.id, visitor_session="v-1")

            first = await AttributionTransfer(session, MemoryTokenStorage(raw), codec=CODEC, clock=FixedClock(NOW)).transfer(customer.id)
            second = await AttributionTransfer(session, MemoryTokenStorage(raw), codec=CODEC, clock=FixedClock(NOW)).transfer(customer.id)

            assert (first.migrated, first.should_clear_token) == (True, True)
            assert (second.migrated, second.should_clear_token) == (True, True)

            rows = await rows_for(session, customer.id)
            assert len(rows) == 1
            assert rows[0].code_id == code.id
            assert rows[0].owner_id == stylist.id
            assert rows[0].visitor_session == "v-1"
            assert rows[0].original_user_id == customer.id
            assert rows[0].expires_at == T0 + timedelta(days=30)
            assert rows[0].converted is False

    run_db(scenario)


def test_converted_history_does_not_block_a_new_attribution(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            code = await add_code(session, stylist)
            await add_attribution(session, code, customer, attributed_at=T0 - timedelta(days=60), converted=True)

            result = await AttributionTransfer(session, MemoryTokenStorage(token_for("SOMMER20")), codec=CODEC, clock=FixedClock(NOW)).transfer(customer.id)

            assert result.migrated
            rows = await rows_for(session, customer.id)
            assert sorted(r.converted for r in rows) == [False, True]

    run_db(scenario)


def test_insert_failure_keeps_token(run_db, quiet_logger):
    class FailingCRUD(AttributionCRUD):
        async def create(self, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            await add_code(session, stylist)
            storage = MemoryTokenStorage(token_for("SOMMER20"))

            transfer = AttributionTransfer(
                session, storage, attributions=FailingCRUD(), codec=CODEC, clock=FixedClock(NOW), logger=quiet_logger,
            )
            result = await transfer.transfer(customer.id)

            assert (result.migrated, result.should_clear_token) == (False, False)
            assert storage.value is not None
            assert await session.scalar(select(func.count(Attribution.id))) == 0

    run_db(scenario)


def test_losing_transfer_adopts_the_concurrent_winner(run_db):
    class BlindCRUD(AttributionCRUD):
        """Misses the open row once, as a transfer racing past the pre-check would."""

        def __init__(self):
            self.blind = True

        async def find_unconverted(self, user_id, code_id, session):
            if self.blind:
                self.blind = False
                return None
            return await super().find_unconverted(user_id, code_id, session)

    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            code = await add_code(session, stylist)
            winner_id = (await add_attribution(session, code, customer)).id

            transfer = AttributionTransfer(
                session, MemoryTokenStorage(token_for("SOMMER20")), attributions=BlindCRUD(), codec=CODEC, clock=FixedClock(NOW),
            )
            result = await transfer.transfer(customer.id)

            assert (result.migrated, result.should_clear_token) == (True, True)
            assert [r.id for r in await rows_for(session, customer.id)] == [winner_id]

    run_db(scenario)


def test_database_allows_one_open_attribution_per_user_and_code(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            code = await add_code(session, stylist)
            await add_attribution(session, code, customer)
            await add_attribution(session, code, customer, attributed_at=T0 - timedelta(days=90), converted=True)

            with pytest.raises(IntegrityError):
                await add_attribution(session, code, customer, attributed_at=T0 + timedelta(days=1))

    run_db(scenario)
