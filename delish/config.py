import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


class Settings(BaseModel):
    database_url: str
    app_url: str = "http://localhost:8000"

    # Signs unlock and access-link tokens. Never shared with the identity provider.
    jwt_secret: str
    auth_jwt_secret: str

    stripe_secret_key: str = ""
    stripe_webhook_secret: str
    platform_fee_percent: int = 10

    resend_api_key: str = ""
    mail_from: str = "Delish <noreply@delish.app>"

    unlock_token_minutes: int = 10
    access_link_minutes: int = 60

    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5


def _env(name: str, default=None):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def load_settings() -> Settings:
    missing = [
        name
        for name in ("DATABASE_URL", "JWT_SECRET", "AUTH_JWT_SECRET", "STRIPE_WEBHOOK_SECRET")
        if not _env(name)
    ]
    if missing:
        raise RuntimeError(f"{', '.join(missing)} not set. Check your .env file.")

    values = {
        "database_url": _env("DATABASE_URL"),
        "app_url": _env("APP_URL"),
        "jwt_secret": _env("JWT_SECRET"),
        "auth_jwt_secret": _env("AUTH_JWT_SECRET"),
        "stripe_secret_key": _env("STRIPE_SECRET_KEY"),
        "stripe_webhook_secret": _env("STRIPE_WEBHOOK_SECRET"),
        "platform_fee_percent": _env("PLATFORM_FEE_PERCENT"),
        "resend_api_key": _env("RESEND_API_KEY"),
        "mail_from": _env("MAIL_FROM"),
        "log_level": _env("LOG_LEVEL"),
        "log_file": _env("LOG_FILE"),
    }
    return Settings(**{k: v for k, v in values.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return load_settings()
