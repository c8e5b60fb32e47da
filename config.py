from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ENV(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_NAME: str = "stylist_affiliate"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASS: str = "postgres"

    # токен, которым основное приложение и cron ходят в защищённые роуты
    SERVICE_API_TOKEN: str = ""

    ATTRIBUTION_COOKIE_NAME: str = "affiliate_attribution"
    ATTRIBUTION_COOKIE_SECRET: str = "change-me"
    ATTRIBUTION_DAYS: int = 30
    COOKIE_SECURE: bool = True

    PAYOUT_CURRENCY: str = "NOK"
    # после ежемесячной генерации пакеты сразу уходят на выплату
    PAYOUT_AUTO_SUBMIT: bool = True
    YOOKASSA_ACCOUNT_ID: str = ""
    YOOKASSA_SECRET_KEY: str = ""

    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"
    CELERY_TIMEZONE: str = "Europe/Oslo"


class Settings():
    def __init__(self):
        self.env = ENV()

    def generate_postgres_url(self) -> str:
        return f"postgresql+asyncpg://{self.env.POSTGRES_USER}:{self.env.POSTGRES_PASS}@{self.env.POSTGRES_HOST}:{self.env.POSTGRES_PORT}/{self.env.POSTGRES_NAME}"


@lru_cache()
def get_env() -> ENV:
    return ENV()
