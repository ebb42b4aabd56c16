"""Central configuration, read from the environment and `.env`."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # --- Environment ---
    env: str = Field(default="development", alias="ENV")
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    # --- Storage ---
    database_url: str = Field(default="sqlite:///./contractflow.db", alias="DATABASE_URL")
    # Empty means in-process counters and queue (single process only)
    redis_url: str = Field(default="", alias="REDIS_URL")

    # --- Rate limiting ---
    rate_limit_generate_draft_max: int = Field(default=5, ge=1, alias="RATE_LIMIT_GENERATE_DRAFT_MAX")
    rate_limit_generate_draft_window_ms: int = Field(
        default=60_000, ge=1000, alias="RATE_LIMIT_GENERATE_DRAFT_WINDOW_MS"
    )

    # --- Draft jobs ---
    draft_job_attempts: int = Field(default=3, ge=1, alias="DRAFT_JOB_ATTEMPTS")
    draft_job_backoff_ms: int = Field(default=1000, ge=0, alias="DRAFT_JOB_BACKOFF_MS")
    max_manual_retries: int = Field(default=5, ge=0, alias="MAX_MANUAL_RETRIES")
    generation_timeout_seconds: float = Field(default=60.0, gt=0, alias="GENERATION_TIMEOUT_SECONDS")
    worker_poll_interval_seconds: float = Field(default=1.0, gt=0, alias="WORKER_POLL_INTERVAL_SECONDS")
    # Redis only. Claims older than this are redelivered; keep it above the generation timeout
    queue_visibility_timeout_seconds: float = Field(
        default=300.0, gt=0, alias="QUEUE_VISIBILITY_TIMEOUT_SECONDS"
    )

    # --- API ---
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    @property
    def sqlalchemy_database_url(self) -> str:
        # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    return Settings()
