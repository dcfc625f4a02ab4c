from __future__ import annotations

import os


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_csv(name: str, default: str = "") -> list[str]:
    raw = _env_str(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]


class Config:
    """
    Runtime configuration read from the environment.

    `load_dotenv()` is called by the app factory before this is constructed, so
    values from a local `.env` file are visible here too.
    """

    def __init__(self) -> None:
        self.ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.ENV in {"prod", "production"}
        self.APP_VERSION = _env_str("APP_VERSION", "0.1.0")
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)

        self.DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///./backoffice.db")
        self.ALLOWED_ORIGINS = _env_csv("ALLOWED_ORIGINS", "http://localhost:5173")
        self.REDIS_URL = _env_str("REDIS_URL", "")

        # Shared secrets for internal/cron endpoints and the subscription webhook.
        self.INTERNAL_CRON_TOKEN = _env_str("INTERNAL_CRON_TOKEN", "")
        self.WEBHOOK_TOKEN = _env_str("WEBHOOK_TOKEN", "")

        self.EVENTS_ASYNC = _env_bool("EVENTS_ASYNC", False)
        self.NOTIFY_WEBHOOK_URL = _env_str("NOTIFY_WEBHOOK_URL", "")
        self.NOTIFY_SIGNING_SECRET = _env_str("NOTIFY_SIGNING_SECRET", "")
        self.NOTIFY_TIMEOUT_SECONDS = max(1, min(60, _env_int("NOTIFY_TIMEOUT_SECONDS", 10)))

        self.GRID_MAX_PAGE_SIZE = max(10, min(1000, _env_int("GRID_MAX_PAGE_SIZE", 200)))
        self.DLM_BATCH_SIZE = max(1, min(10_000, _env_int("DLM_BATCH_SIZE", 500)))

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION and not self.INTERNAL_CRON_TOKEN:
            raise RuntimeError("INTERNAL_CRON_TOKEN is required in production")
