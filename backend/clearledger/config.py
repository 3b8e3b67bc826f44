from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Clearledger API"
    app_version: str = "0.1.0"
    environment: str = "local"
    frontend_url: str = "http://localhost:3000"
    database_url: str = "sqlite:///./local.db"
    redis_url: str = "redis://localhost:6379/0"

    log_level: str = "info"
    log_json: bool = False
    sentry_dsn: str | None = None

    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60

    clearance_cache_ttl_seconds: int = 300
    ledger_lock_ttl_seconds: int = 10

    blob_base_url: str = "http://localhost:9000"
    receipt_bucket: str = "receipts"
    blob_signing_key: str = "change-me-blob-signing-key"
    receipt_upload_url_ttl_seconds: int = 900
    receipt_download_url_ttl_seconds: int = 1800

    invite_ttl_hours: int = 72
    notification_max_attempts: int = 5
    notification_batch_size: int = 50

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
