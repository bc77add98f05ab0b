"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./capacity_planner.db"
    SQL_ECHO: bool = False

    # Application
    APP_ENV: str = "development"
    API_V1_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Scenario engine
    BASELINE_NAME: str = "Current State Baseline"
    MAX_LINEAGE_DEPTH: int = 64
    LINEAGE_DEPTH_WARNING: int = 8
    SNAPSHOT_ISOLATION_LEVEL: str = "REPEATABLE READ"
    OVER_ALLOCATION_THRESHOLD: float = 100.0
    HISTORY_DEFAULT_LIMIT: int = 50

    # Storage retries (transient failures only)
    STORAGE_MAX_ATTEMPTS: int = 3
    STORAGE_RETRY_BACKOFF_SECONDS: float = 0.2

    # CORS
    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        if self.APP_ENV == "development":
            return ["*"]  # Allow all origins in development
        return [self.FRONTEND_URL, "http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )


settings = Settings()
