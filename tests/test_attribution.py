from datetime import timedelta

from sqlalchemy import func, select

from api.models import AffiliateCode, Attribution
from services.affiliate import AttributionCapture, AttributionStore, ErrorKind, TokenCodec
from services.affiliate.token import AttributionToken
from tests.factories import FixedClock, MemoryTokenStorage, T0, add_attribution, add_code, add_profile, add_stylist

CODEC = TokenCodec("test-secret")


def token_for(code: str, attributed_at=T0, **kwargs) -> str:
    return CODEC.encode(AttributionToken(
        code=code,
        attributed_at=attributed_at,
        expires_at=attributed_at + timedelta(days=30),
        **kwargs,
    ))


async def count_attributions(session) -> int:
    return await session.scalar(select(func.count(Attribution.id)))


def test_durable_record_expires_after_thirty_days(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            code = await add_code(session, stylist)
            await add_attribution(session, code, customer, attributed_at=T0)

            clock = FixedClock(T0 + timedelta(days=29))
            store = AttributionStore.build(session, MemoryTokenStorage(), codec=CODEC, clock=clock)
            found = await store.get_attribution(customer.id)
            assert found is not None
            assert found.source == "durable"
            assert found.code == "SOMMER20"
            assert found.owner_id == stylist.id

            clock.now = T0 + timedelta(days=31)
            assert await store.get_attribution(customer.id) is None
            assert await count_attributions(session) == 0

    run_db(scenario)


def test_expired_code_deletes_stored_attribution_on_read(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            customer = await add_profile(session, "Ingrid")
            code = await add_code(session, stylist, expires_at=T0 - timedelta(days=1))
            await add_attribution(session, code, customer, attributed_at=T0 - timedelta(days=3))

            store = AttributionStore.build(session, MemoryTokenStorage(), codec=CODEC, clock=FixedClock(T0))
            assert await store.get_attribution(customer.id) is None
            assert await count_attributions(session) == 0

    run_db(scenario)


def test_falls_through_to_token_for_anonymous_visitor(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            await add_code(session, stylist)
            storage = MemoryTokenStorage(token_for("SOMMER20", visitor_session="v-1"))

            store = AttributionStore.build(session, storage, codec=CODEC, clock=FixedClock(T0 + timedelta(days=2)))
            found = await store.get_attribution(None)

            assert found.source == "token"
            assert found.owner_id == stylist.id
            assert found.visitor_session == "v-1"
            assert storage.cleared == 0

    run_db(scenario)


def test_dead_tokens_are_cleared(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            await add_code(session, stylist, "OFF2026", is_active=False)
            clock = FixedClock(T0 + timedelta(days=1))

            for raw in ("not-a-token", token_for("OFF2026"), token_for("SOMMER20", attributed_at=T0 - timedelta(days=40))):
                storage = MemoryTokenStorage(raw)
                store = AttributionStore.build(session, storage, codec=CODEC, clock=clock)
                assert await store.get_attribution(None) is None
                assert storage.cleared == 1
                assert storage.value is None

    run_db(scenario)


def test_failed_cleanup_does_not_fail_the_read(run_db, quiet_logger):
    class BrokenStorage(MemoryTokenStorage):
        def clear(self):
            raise RuntimeError("response already sent")

    async def scenario(sessions):
        async with sessions() as session:
            store = AttributionStore.build(session, BrokenStorage("junk"), codec=CODEC, clock=FixedClock(), logger=quiet_logger)
            assert await store.get_attribution(None) is None

    run_db(scenario)


def test_capture_writes_token_and_counts_click(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            stylist = await add_stylist(session)
            code = await add_code(session, stylist)
            storage = MemoryTokenStorage()

            result = await AttributionCapture(session, storage, codec=CODEC, clock=FixedClock()).capture("sommer20", visitor_session="v-9")

            assert result.success
            token = CODEC.decode(storage.value)
            assert token.code == "SOMMER20"
            assert token.expires_at == T0 + timedelta(days=30)
            assert token.visitor_session == "v-9"
            assert storage.expires_at == token.expires_at

        async with sessions() as session:
            assert (await session.get(AffiliateCode, code.id)).click_count == 1

    run_db(scenario)


def test_capture_rejects_invalid_code_without_token(run_db):
    async def scenario(sessions):
        async with sessions() as session:
            storage = MemoryTokenStorage()
            result = await AttributionCapture(session, storage, codec=CODEC).capture("MISSING")
            assert result.error == ErrorKind.NOT_FOUND
            assert storage.value is None

    run_db(scenario)
