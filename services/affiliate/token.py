import logging
import uuid
from datetime import datetime, timedelta
from typing import Protocol

from fastapi import Request, Response
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer
from pydantic import BaseModel, ValidationError

from config import get_env
from utils.clock import Clock, utcnow


class AttributionToken(BaseModel):
    """Browser-side attribution claim, mirrored in the `affiliate_attribution` cookie."""

    code: str
    attributed_at: datetime
    expires_at: datetime
    original_user_id: uuid.UUID | None = None
    visitor_session: str | None = None


class TokenError(Exception): ...


class TokenCodec:
    """
    Signed, timestamped token on top of itsdangerous. Anything that does not
    verify or does not parse as an AttributionToken raises TokenError.
    """

    salt = "affiliate-attribution"

    def __init__(self, secret: str | None = None, max_age_days: int | None = None):
        env = get_env()
        self.serializer = URLSafeTimedSerializer(secret or env.ATTRIBUTION_COOKIE_SECRET, salt=self.salt)
        # подпись старше окна атрибуции не принимаем
        self.max_age = int(timedelta(days=max_age_days or env.ATTRIBUTION_DAYS).total_seconds())

    def encode(self, token: AttributionToken) -> str:
        return self.serializer.dumps(token.model_dump(mode="json"))

    def decode(self, raw: str) -> AttributionToken:
        try:
            data = self.serializer.loads(raw, max_age=self.max_age)
        except SignatureExpired:
            raise TokenError("signature expired")
        except BadData as e:
            raise TokenError(f"bad token: {e.__class__.__name__}")

        try:
            return AttributionToken.model_validate(data)
        except ValidationError as e:
            raise TokenError(f"unreadable payload: {e.error_count()} errors")


class TokenStorage(Protocol):
    def get(self) -> str | None: ...
    def set(self, value: str, expires_at: datetime) -> None: ...
    def clear(self) -> None: ...


class CookieTokenStorage:
    """Reads the token from the request cookie and writes changes onto the response."""

    def __init__(
        self,
        request: Request,
        response: Response,
        cookie_name: str | None = None,
        secure: bool | None = None,
        clock: Clock = utcnow,
    ):
        env = get_env()
        self.request = request
        self.response = response
        self.cookie_name = cookie_name or env.ATTRIBUTION_COOKIE_NAME
        self.secure = env.COOKIE_SECURE if secure is None else secure
        self._cleared = False
        self._value: str | None = None
        self.clock = clock

    def get(self) -> str | None:
        if self._cleared:
            return None
        if self._value is not None:
            return self._value
        return self.request.cookies.get(self.cookie_name)

    def set(self, value: str, expires_at: datetime) -> None:
        self._value = value
        self._cleared = False
        max_age = max(int((expires_at - self.clock()).total_seconds()), 0)
        self.response.set_cookie(
            key=self.cookie_name,
            value=value,
            max_age=max_age,
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )

    def clear(self) -> None:
        self._value = None
        self._cleared = True
        self.response.delete_cookie(self.cookie_name, httponly=True, secure=self.secure, samesite="lax")


class TokenReader:
    """Reads and verifies the token, clearing the storage whenever the token is dead."""

    def __init__(self, storage: TokenStorage, codec: TokenCodec, logger: logging.Logger | None = None):
        self.storage = storage
        self.codec = codec
        self.log = logger or logging.getLogger(__name__)

    def read(self, now: datetime) -> tuple[AttributionToken | None, bool]:
        """Returns (token, present). `present` is False only when no token was stored at all."""
        raw = self.storage.get()
        if not raw:
            return None, False
        try:
            token = self.codec.decode(raw)
        except TokenError as e:
            self.log.info("Discarding attribution token: %s", e)
            return None, True
        if token.expires_at <= now:
            self.log.info("Attribution token for %s expired at %s", token.code, token.expires_at)
            return None, True
        return token, True
