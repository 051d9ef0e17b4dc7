"""
CreditWatch Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "CreditWatch"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")
    api_prefix: str = "/api/v1"
    run_workers: bool = Field(
        default=False, alias="RUN_WORKERS",
        description="Run queue workers inside the API process",
    )

    # ── Queue ─────────────────────────────────────────────────────────────
    queue_backend: str = Field(default="redis", alias="QUEUE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    alert_stream: str = Field(default="credit-alerts", alias="ALERT_STREAM")
    alert_consumer_group: str = Field(default="alert-processors", alias="ALERT_CONSUMER_GROUP")
    dead_letter_stream: str = Field(default="credit-alerts:dead-letter", alias="DEAD_LETTER_STREAM")
    queue_lock_seconds: float = Field(
        default=60.0, alias="QUEUE_LOCK_SECONDS",
        description="Lease duration before an unacknowledged message is redelivered",
    )

    # ── Processing ────────────────────────────────────────────────────────
    max_attempts: int = Field(default=3, ge=1, alias="ALERT_MAX_ATTEMPTS")
    redelivery_delay_seconds: float = Field(default=0.0, ge=0.0, alias="REDELIVERY_DELAY_SECONDS")
    processor_concurrency: int = Field(default=1, ge=1, alias="PROCESSOR_CONCURRENCY")

    # ── Workers ───────────────────────────────────────────────────────────
    worker_count: int = Field(default=1, ge=1, alias="WORKER_COUNT")
    batch_size: int = Field(default=10, ge=1, alias="WORKER_BATCH_SIZE")
    receive_wait_seconds: float = Field(default=5.0, gt=0.0, alias="RECEIVE_WAIT_SECONDS")
    empty_backoff_seconds: float = Field(default=1.0, ge=0.0, alias="EMPTY_BACKOFF_SECONDS")
    error_backoff_seconds: float = Field(default=5.0, ge=0.0, alias="ERROR_BACKOFF_SECONDS")

    # ── Real-time delivery ────────────────────────────────────────────────
    delivery_timeout_seconds: float = Field(default=2.0, gt=0.0, alias="DELIVERY_TIMEOUT_SECONDS")
    connection_queue_size: int = Field(default=100, ge=1, alias="CONNECTION_QUEUE_SIZE")
    sse_keepalive_seconds: float = Field(default=30.0, gt=0.0, alias="SSE_KEEPALIVE_SECONDS")

    # ── JWT ────────────────────────────────────────────────────────────────
    jwt_secret: str = Field(
        default="dev-jwt-secret-change-in-production",
        alias="JWT_SECRET",
    )
    jwt_algorithm: str = "HS256"

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")
    graceful_shutdown_seconds: int = Field(default=30, alias="GRACEFUL_SHUTDOWN_SECONDS")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
