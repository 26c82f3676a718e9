from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_database: str = "docproc"
    db_username: str = "docproc"
    db_password: str = "secret"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_pool_timeout_seconds: float = 30.0
    db_apply_schema: bool = False

    storage_backend: str = "local"
    storage_root: str = "/app/files"

    pdf_engine: str = "pymupdf"
    max_file_size_bytes: int = 50 * 1024 * 1024

    lock_ttl_seconds: int = 300
    idempotency_ttl_seconds: int = 3600
    # How long an unfinished keyed request holds its key before others may take it over.
    idempotency_pending_ttl_seconds: int = 120
    idempotency_poll_interval_seconds: float = 0.2

    duplicate_threshold: float = 0.8
    duplicate_lookback_days: int = 365
    duplicate_max_candidates: int = 1000

    extraction_provider: str = "example"
    max_pipeline_attempts: int = 3
    job_poll_interval_seconds: int = 5
