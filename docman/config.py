import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment == "development":
        return "postgresql+psycopg://localhost:5434/docman"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv(
        "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
    )

    # Review scheduling
    review_due_soon_days: int = int(os.getenv("REVIEW_DUE_SOON_DAYS", "7"))
    review_notify_horizon_hours: int = int(
        os.getenv("REVIEW_NOTIFY_HORIZON_HOURS", "24")
    )
    review_notify_truncate_to_day: bool = _env_bool(
        "REVIEW_NOTIFY_TRUNCATE_TO_DAY", "true"
    )
    review_notify_max_workers: int = int(os.getenv("REVIEW_NOTIFY_MAX_WORKERS", "4"))
    review_notify_send_timeout_seconds: float = float(
        os.getenv("REVIEW_NOTIFY_SEND_TIMEOUT_SECONDS", "10")
    )
    review_notify_cron_hour: int = int(os.getenv("REVIEW_NOTIFY_CRON_HOUR", "6"))

    # Branding
    brand_name: str = os.getenv("BRAND_NAME", "DocMan")


settings = Settings()
