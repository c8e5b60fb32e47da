import logging
import uuid
from datetime import datetime, timedelta
from typing import Literal, Protocol

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.attribution import AttributionCRUD
from api.models import Attribution
from config import get_env
from utils.clock import Clock, utcnow
from utils.effects import best_effort, best_effort_sync
from .token import AttributionToken, TokenCodec, TokenReader, TokenStorage
from .validator import CodeValidator, ValidationResult


class ResolvedAttribution(BaseModel):
    """What the rest of the workflow sees, whichever source the attribution came from."""

    source: Literal["durable", "token", "manual"]
    code: str
    code_id: uuid.UUID | None = None
    owner_id: uuid.UUID
    owner_name: str | None = None
    attributed_at: datetime
    expires_at: datetime
    original_user_id: uuid.UUID | None = None
    visitor_session: str | None = None
    attribution_id: uuid.UUID | None = None


class TransferResult(BaseModel):
    migrated: bool
    should_clear_token: bool


class AttributionProvider(Protocol):
    async def lookup(self, subject: uuid.UUID | None) -> ResolvedAttribution | None: ...


class DurableAttributionProvider:
    """Per-user attribution rows. Stale rows are deleted on read."""

    def __init__(
        self,
        session: AsyncSession,
        validator: CodeValidator,
        attributions: AttributionCRUD | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
    ):
        self.session = session
        self.validator = validator
        self.attributions = attributions or AttributionCRUD()
        self.clock = clock
        self.log = logger or logging.getLogger(__name__)

    async def _discard(self, record: Attribution, why: str) -> None:
        self.log.info("Removing attribution %s: %s", record.id, why)
        async with best_effort(f"delete stale attribution {record.id}", self.log, rollback=self.session):
            await self.attributions.delete(record.id, self.session)
            await self.session.commit()

    async def lookup(self, subject: uuid.UUID | None) -> ResolvedAttribution | None:
        if subject is None:
            return None

        record = await self.attributions.latest_unconverted_for_user(subject, self.session)
        if record is None:
            return None

        result = await self.validator.validate(record.affiliate_code.code)
        if not result.success:
            await self._discard(record, f"code no longer valid ({result.error.value})")
            return None

        if record.expires_at <= self.clock():
            await self._discard(record, "attribution window elapsed")
            return None

        return ResolvedAttribution(
            source="durable",
            code=result.code,
            code_id=record.code_id,
            owner_id=result.owner_id,
            owner_name=result.owner_name,
            attributed_at=record.attributed_at,
            expires_at=record.expires_at,
            original_user_id=record.original_user_id,
            visitor_session=record.visitor_session,
            attribution_id=record.id,
        )


class TokenAttributionProvider:
    """Signed browser token. Any dead token is cleared from storage."""

    def __init__(
        self,
        storage: TokenStorage,
        validator: CodeValidator,
        codec: TokenCodec | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
    ):
        self.storage = storage
        self.validator = validator
        self.log = logger or logging.getLogger(__name__)
        self.reader = TokenReader(storage, codec or TokenCodec(), self.log)
        self.clock = clock

    def _clear(self) -> None:
        with best_effort_sync("clear attribution token", self.log):
            self.storage.clear()

    async def lookup(self, subject: uuid.UUID | None) -> ResolvedAttribution | None:
        token, present = self.reader.read(self.clock())
        if token is None:
            if present:
                self._clear()
            return None

        result = await self.validator.validate(token.code)
        if not result.success:
            self.log.info("Attribution token code %s rejected: %s", token.code, result.error.value)
            self._clear()
            return None

        return ResolvedAttribution(
            source="token",
            code=result.code,
            code_id=result.code_id,
            owner_id=result.owner_id,
            owner_name=result.owner_name,
            attributed_at=token.attributed_at,
            expires_at=token.expires_at,
            original_user_id=token.original_user_id,
            visitor_session=token.visitor_session,
        )


class AttributionStore:
    """Asks each provider in order; the first non-empty answer wins."""

    def __init__(self, providers: list[AttributionProvider]):
        self.providers = providers

    @classmethod
    def build(
        cls,
        session: AsyncSession,
        storage: TokenStorage,
        validator: CodeValidator | None = None,
        codec: TokenCodec | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
    ) -> "AttributionStore":
        validator = validator or CodeValidator(session, clock=clock, logger=logger)
        return cls([
            DurableAttributionProvider(session, validator, clock=clock, logger=logger),
            TokenAttributionProvider(storage, validator, codec=codec, clock=clock, logger=logger),
        ])

    async def get_attribution(self, subject: uuid.UUID | None = None) -> ResolvedAttribution | None:
        for provider in self.providers:
            found = await provider.lookup(subject)
            if found is not None:
                return found
        return None


class AttributionTransfer:
    """Moves a browser token into a durable row once the visitor has logged in."""

    def __init__(
        self,
        session: AsyncSession,
        storage: TokenStorage,
        validator: CodeValidator | None = None,
        attributions: AttributionCRUD | None = None,
        codec: TokenCodec | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
    ):
        self.session = session
        self.log = logger or logging.getLogger(__name__)
        self.validator = validator or CodeValidator(session, clock=clock, logger=self.log)
        self.attributions = attributions or AttributionCRUD()
        self.reader = TokenReader(storage, codec or TokenCodec(), self.log)
        self.clock = clock

    async def transfer(self, subject: uuid.UUID, visitor_session: str | None = None) -> TransferResult:
        token, present = self.reader.read(self.clock())
        if not present:
            return TransferResult(migrated=False, should_clear_token=False)
        if token is None:
            return TransferResult(migrated=False, should_clear_token=True)

        result = await self.validator.validate(token.code)
        if not result.success:
            self.log.info("Not migrating token for %s: %s", token.code, result.error.value)
            return TransferResult(migrated=False, should_clear_token=True)

        existing = await self.attributions.find_unconverted(subject, result.code_id, self.session)
        if existing is not None:
            return TransferResult(migrated=True, should_clear_token=True)

        code = await self.validator.codes.get_code(result.code_id, self.session)
        try:
            await self.attributions.create(
                code=code,
                user_id=subject,
                attributed_at=token.attributed_at,
                expires_at=token.expires_at,
                visitor_session=visitor_session or token.visitor_session,
                original_user_id=token.original_user_id,
                session=self.session,
            )
            await self.session.commit()
        except IntegrityError:
            # параллельный перенос успел вставить ту же пару (user, code)
            await self.session.rollback()
            winner = await self.attributions.find_unconverted(subject, result.code_id, self.session)
            if winner is not None:
                return TransferResult(migrated=True, should_clear_token=True)
            self.log.warning("Attribution insert for user %s conflicted without a winner", subject)
            return TransferResult(migrated=False, should_clear_token=False)
        except SQLAlchemyError:
            await self.session.rollback()
            self.log.error("Failed to persist attribution for user %s", subject, exc_info=True)
            return TransferResult(migrated=False, should_clear_token=False)

        self.log.info("Migrated attribution %s to user %s", result.code, subject)
        return TransferResult(migrated=True, should_clear_token=True)


class AttributionCapture:
    """First contact with a code: writes a fresh token and counts the click."""

    def __init__(
        self,
        session: AsyncSession,
        storage: TokenStorage,
        validator: CodeValidator | None = None,
        codec: TokenCodec | None = None,
        clock: Clock = utcnow,
        logger: logging.Logger | None = None,
        window_days: int | None = None,
    ):
        self.session = session
        self.storage = storage
        self.log = logger or logging.getLogger(__name__)
        self.validator = validator or CodeValidator(session, clock=clock, logger=self.log)
        self.codec = codec or TokenCodec()
        self.clock = clock
        self.window = timedelta(days=window_days or get_env().ATTRIBUTION_DAYS)

    async def capture(
        self,
        code: str,
        original_user_id: uuid.UUID | None = None,
        visitor_session: str | None = None,
    ) -> ValidationResult:
        result = await self.validator.validate(code)
        if not result.success:
            return result

        now = self.clock()
        token = AttributionToken(
            code=result.code,
            attributed_at=now,
            expires_at=now + self.window,
            original_user_id=original_user_id,
            visitor_session=visitor_session,
        )
        self.storage.set(self.codec.encode(token), token.expires_at)

        async with best_effort(f"count click for {result.code}", self.log, rollback=self.session):
            await self.validator.codes.increment_clicks(result.code_id, self.session)
            await self.session.commit()

        return result
