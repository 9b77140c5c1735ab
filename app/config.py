"""
Build-State Service Configuration

Environment Variables:
- DATABASE_URL: Service PostgreSQL database (ledger + project registry)
- ADMIN_API_KEY: API key for direct validation and ledger reads
- GITHUB_WEBHOOK_SECRET: Shared secret for X-Hub-Signature-256
- GITHUB_TOKEN: Token used for status posts, comments and repo reads
- RAILWAY_WEBHOOK_TOKEN: Shared token for deploy platform webhooks
- ENV: environment (development/production)
"""

import os
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Build-state service settings."""

    # Core
    ENV: str = os.getenv("ENV", "development")
    DEBUG: bool = ENV == "development"

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    RUN_MIGRATIONS: bool = True

    # Authentication
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")
    GITHUB_WEBHOOK_SECRET: str = os.getenv("GITHUB_WEBHOOK_SECRET", "")
    RAILWAY_WEBHOOK_TOKEN: str = os.getenv("RAILWAY_WEBHOOK_TOKEN", "")

    # Source control
    GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")
    GITHUB_API_URL: str = "https://api.github.com"
    STATUS_CONTEXT: str = "mentor/pr-validation"
    STATUS_DESCRIPTION_LIMIT: int = 140

    # Deploy platform
    RAILWAY_API_TOKEN: str = os.getenv("RAILWAY_API_TOKEN", "")
    RAILWAY_API_URL: str = "https://backboard.railway.app/graphql/v2"
    REQUIRED_DEPLOY_VARIABLES: List[str] = ["DATABASE_URL", "PORT"]

    # Task board
    TRELLO_API_KEY: str = os.getenv("TRELLO_API_KEY", "")
    TRELLO_TOKEN: str = os.getenv("TRELLO_TOKEN", "")
    TRELLO_API_URL: str = "https://api.trello.com/1"

    # Review agent
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    REVIEW_MODEL: str = "gpt-4o-mini"
    REVIEW_MAX_DIFF_CHARS: int = 60000

    # Code structure checks
    ERROR_REPORT_ENDPOINT: str = "/api/Mentor/runtime-error"

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",  # Local dev
    ]

    # Pipeline
    DEDUP_WINDOW_SECONDS: int = 30
    LEDGER_SEQUENCE_MAX_ATTEMPTS: int = 5
    LEDGER_SEQUENCE_BACKOFF_SECONDS: float = 0.05
    HTTP_TIMEOUT_SECONDS: float = 15.0
    PIPELINE_DEADLINE_SECONDS: float = 180.0
    LAST_OUTPUT_MAX_CHARS: int = 10000

    # Reconciliation sweep
    STALE_IN_PROGRESS_MINUTES: int = 45
    STALE_SWEEP_INTERVAL_MINUTES: int = 10

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


_settings = None


def get_settings() -> Settings:
    """Get settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
