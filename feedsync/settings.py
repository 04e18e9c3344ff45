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
    app_name: str = os.getenv("APP_NAME", "feedsync")
    database_url: str = os.getenv(
        "DATABASE_URL",
        "sqlite+aiosqlite:///./feedsync.db",
    )
    database_pool_mode: str = _env_str("DATABASE_POOL_MODE", "auto")
    database_pool_size: int = _env_int("DATABASE_POOL_SIZE", 5)
    database_pool_max_overflow: int = _env_int("DATABASE_POOL_MAX_OVERFLOW", 10)
    database_pool_timeout_seconds: int = _env_int("DATABASE_POOL_TIMEOUT_SECONDS", 30)
    log_level: str = _env_str("LOG_LEVEL", "INFO")
    log_format: str = _env_str("LOG_FORMAT", "console")
    log_redact_fields: str = os.getenv("LOG_REDACT_FIELDS", "")
    source_api_base_url: str = _env_str("SOURCE_API_BASE_URL", "")
    source_user_id: str = os.getenv("SOURCE_USER_ID", "")
    source_tenant_key: str = os.getenv("SOURCE_TENANT_KEY", "")
    source_timeout_search_seconds: float = _env_float("SOURCE_TIMEOUT_SEARCH_SECONDS", 20.0)
    source_timeout_quota_seconds: float = _env_float("SOURCE_TIMEOUT_QUOTA_SECONDS", 5.0)
    source_timeout_transcript_seconds: float = _env_float(
        "SOURCE_TIMEOUT_TRANSCRIPT_SECONDS",
        180.0,
    )
    source_default_region: str = _env_str("SOURCE_DEFAULT_REGION", "US")
    source_keyword_page_size: int = _env_int("SOURCE_KEYWORD_PAGE_SIZE", 15)
    source_account_page_size: int = _env_int("SOURCE_ACCOUNT_PAGE_SIZE", 30)
    collection_max_pages: int = _env_int("COLLECTION_MAX_PAGES", 100)
    collection_page_delay_seconds: float = _env_float("COLLECTION_PAGE_DELAY_SECONDS", 0.3)
    collection_key_scan_limit: int = _env_int("COLLECTION_KEY_SCAN_LIMIT", 5000)
    collection_empty_slot_scan_limit: int = _env_int("COLLECTION_EMPTY_SLOT_SCAN_LIMIT", 500)
    collection_scan_page_size: int = _env_int("COLLECTION_SCAN_PAGE_SIZE", 200)
    collection_write_chunk_size: int = _env_int("COLLECTION_WRITE_CHUNK_SIZE", 50)
    cover_retry_max_attempts: int = _env_int("COVER_RETRY_MAX_ATTEMPTS", 3)
    cover_retry_base_delay_seconds: float = _env_float("COVER_RETRY_BASE_DELAY_SECONDS", 0.4)
    transcript_retry_max_attempts: int = _env_int("TRANSCRIPT_RETRY_MAX_ATTEMPTS", 2)
    transcript_retry_base_delay_seconds: float = _env_float(
        "TRANSCRIPT_RETRY_BASE_DELAY_SECONDS",
        1.2,
    )
    side_fetch_max_delay_seconds: float = _env_float("SIDE_FETCH_MAX_DELAY_SECONDS", 30.0)
    quota_refresh_interval_seconds: int = _env_int("QUOTA_REFRESH_INTERVAL_SECONDS", 600)
    quota_enforcement_enabled: bool = _env_bool("QUOTA_ENFORCEMENT_ENABLED", True)
    platform_base_url: str = _env_str("PLATFORM_BASE_URL", "https://www.tiktok.com")


settings = Settings()
