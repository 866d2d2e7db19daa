from dataclasses import dataclass
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    return float(value)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip() or default


@dataclass(frozen=True)
class Settings:
    app_name: str = os.getenv("APP_NAME", "affiliate-scout")
    database_url: str = os.getenv(
        "DATABASE_URL",
        "postgresql+asyncpg://scout:scout@db:5432/scout",
    )
    database_pool_mode: str = _env_str("DATABASE_POOL_MODE", "auto")
    database_pool_size: int = _env_int("DATABASE_POOL_SIZE", 5)
    database_pool_max_overflow: int = _env_int("DATABASE_POOL_MAX_OVERFLOW", 10)
    database_pool_timeout_seconds: int = _env_int("DATABASE_POOL_TIMEOUT_SECONDS", 30)
    log_level: str = _env_str("LOG_LEVEL", "INFO")
    log_format: str = _env_str("LOG_FORMAT", "console")
    log_requests: bool = _env_bool("LOG_REQUESTS", True)
    log_uvicorn_access: bool = _env_bool("LOG_UVICORN_ACCESS", False)
    log_request_skip_paths: str = _env_str("LOG_REQUEST_SKIP_PATHS", "/healthz")
    log_redact_fields: str = os.getenv("LOG_REDACT_FIELDS", "")
    apify_api_token: str = os.getenv("APIFY_API_TOKEN", "")
    apify_api_url: str = _env_str("APIFY_API_URL", "https://api.apify.com/v2")
    apify_timeout_seconds: float = _env_float("APIFY_TIMEOUT_SECONDS", 15.0)
    apify_search_actor_id: str = _env_str("APIFY_SEARCH_ACTOR_ID", "nFJndFXA5zjCTuudP")
    apify_youtube_actor_id: str = _env_str("APIFY_YOUTUBE_ACTOR_ID", "h7sDV53CddomktSi5")
    apify_instagram_actor_id: str = _env_str(
        "APIFY_INSTAGRAM_ACTOR_ID",
        "shu8hvrXbJbY3Eb9W",
    )
    apify_tiktok_actor_id: str = _env_str("APIFY_TIKTOK_ACTOR_ID", "GdWCkxBtKWOsKjdch")
    search_results_per_page: int = _env_int("SEARCH_RESULTS_PER_PAGE", 10)
    search_max_pages_per_query: int = _env_int("SEARCH_MAX_PAGES_PER_QUERY", 5)
    search_max_keywords: int = _env_int("SEARCH_MAX_KEYWORDS", 5)
    search_max_competitors: int = _env_int("SEARCH_MAX_COMPETITORS", 3)
    search_job_timeout_seconds: int = _env_int("SEARCH_JOB_TIMEOUT_SECONDS", 600)
    search_job_start_grace_seconds: int = _env_int("SEARCH_JOB_START_GRACE_SECONDS", 120)
    search_enrichment_wait_budget_seconds: float = _env_float(
        "SEARCH_ENRICHMENT_WAIT_BUDGET_SECONDS",
        8.0,
    )
    search_enrichment_max_cycles: int = _env_int("SEARCH_ENRICHMENT_MAX_CYCLES", 10)
    search_enrichment_max_seconds: int = _env_int("SEARCH_ENRICHMENT_MAX_SECONDS", 240)
    dedup_insert_chunk_size: int = _env_int("DEDUP_INSERT_CHUNK_SIZE", 200)
    credit_period_days: int = _env_int("CREDIT_PERIOD_DAYS", 30)
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    checkout_success_url: str = _env_str(
        "CHECKOUT_SUCCESS_URL",
        "http://localhost:3000/settings?credits=success",
    )
    checkout_cancel_url: str = _env_str(
        "CHECKOUT_CANCEL_URL",
        "http://localhost:3000/settings?credits=canceled",
    )
    stripe_price_email_50: str = os.getenv("STRIPE_PRICE_EMAIL_50", "")
    stripe_price_email_150: str = os.getenv("STRIPE_PRICE_EMAIL_150", "")
    stripe_price_email_500: str = os.getenv("STRIPE_PRICE_EMAIL_500", "")
    stripe_price_ai_50: str = os.getenv("STRIPE_PRICE_AI_50", "")
    stripe_price_ai_150: str = os.getenv("STRIPE_PRICE_AI_150", "")
    stripe_price_ai_500: str = os.getenv("STRIPE_PRICE_AI_500", "")
    stripe_price_search_5: str = os.getenv("STRIPE_PRICE_SEARCH_5", "")
    stripe_price_search_15: str = os.getenv("STRIPE_PRICE_SEARCH_15", "")


settings = Settings()
