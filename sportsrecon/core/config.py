"""
Application configuration with environment-specific settings.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required settings for production:
- DATABASE_URL
- ORACLE_GATEWAY_URL (authoritative analytics source)
"""
import os
import logging
from datetime import date
from pathlib import Path
from typing import Optional, Literal
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Project root directory (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "Sports Data Reconciliation API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8002

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./sportsrecon.db")

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    BULK_RATE_LIMIT: str = "10/minute"

    # CORS - comma-separated string for env var parsing
    CORS_ORIGINS_STR: str = ""

    # Authoritative sources
    ORACLE_GATEWAY_URL: str = ""  # HTTP gateway in front of the analytics database
    ORACLE_GATEWAY_TOKEN: str = ""
    STATS_API_BASE_URL: str = ""
    STATS_API_KEY: str = ""
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Bulk comparison jobs
    BULK_MAX_CONCURRENCY: int = 5  # Hard ceiling regardless of request
    BULK_DEFAULT_CONCURRENCY: int = 3
    BULK_MIN_BATCH_DELAY_SECONDS: float = 1.0  # Floor regardless of request
    BULK_DEFAULT_BATCH_DELAY_SECONDS: float = 2.0
    BULK_SECONDS_PER_OPERATION: int = 3  # Used for estimates only
    BULK_RECENT_JOBS_LIMIT: int = 20

    # Mapping auto-discovery
    RECORD_MAPPING_SUGGESTIONS: bool = True
    SUGGESTION_FUZZY_THRESHOLD: int = 90
    SUGGESTION_MAX_EXAMPLES: int = 5

    # Maintenance
    SCHEDULER_ENABLED: bool = True
    RULE_EXPIRY_SWEEP_MINUTES: int = 60

    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Get CORS origins with environment-aware defaults."""
        if self.CORS_ORIGINS_STR:
            origins = [o.strip() for o in self.CORS_ORIGINS_STR.split(",") if o.strip()]
            if origins:
                if self.is_production() and "*" in origins:
                    logger.warning(
                        "Wildcard CORS origins (*) are not allowed in production. "
                        "Please set explicit origins in CORS_ORIGINS_STR environment variable."
                    )
                    return []
                return origins

        if self.is_production():
            logger.warning("CORS_ORIGINS_STR not set in production.")
            return []

        return [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def is_test(self) -> bool:
        """Check if running in test environment."""
        return self.ENVIRONMENT == "test"

    def validate_required_settings(self) -> list[str]:
        """
        Validate that required settings are present for the current environment.

        Returns:
            List of missing setting names (empty if all present)
        """
        missing = []

        if self.is_production():
            if not self.DATABASE_URL or self.DATABASE_URL.startswith("sqlite"):
                missing.append("DATABASE_URL")
            if not self.ORACLE_GATEWAY_URL:
                missing.append("ORACLE_GATEWAY_URL")

        return missing

    def effective_concurrency(self, requested: Optional[int]) -> int:
        """Clamp a requested concurrency into [1, BULK_MAX_CONCURRENCY]."""
        value = requested if requested else self.BULK_DEFAULT_CONCURRENCY
        return max(1, min(int(value), self.BULK_MAX_CONCURRENCY))

    def effective_batch_delay(self, requested: Optional[float]) -> float:
        """Raise a requested inter-batch delay to at least BULK_MIN_BATCH_DELAY_SECONDS."""
        value = requested if requested is not None else self.BULK_DEFAULT_BATCH_DELAY_SECONDS
        return max(float(value), self.BULK_MIN_BATCH_DELAY_SECONDS)


def _load_env_file() -> Path:
    """
    Load the appropriate environment file based on ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT}
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
        return default_env

    logger.debug(f"No environment file found for '{environment}' (checked .env.{environment}, .env)")
    return default_env


_env_file = _load_env_file()


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = _SettingsWithEnvFile()


def get_default_season(today: Optional[date] = None) -> int:
    """
    Get the default season year for comparisons.

    Seasons that span the new year are keyed by the year they start in, so
    January through June still belong to the previous year's season.

    Args:
        today: Reference date (defaults to today)

    Returns:
        Season year

    Examples:
        >>> get_default_season(date(2025, 3, 1))
        2024
        >>> get_default_season(date(2025, 9, 1))
        2025
    """
    today = today or date.today()
    return today.year - 1 if today.month <= 6 else today.year


missing_settings = settings.validate_required_settings()
if missing_settings:
    logger.warning(f"Missing required settings for {settings.ENVIRONMENT}: {', '.join(missing_settings)}")
    if settings.is_production():
        raise ValueError(
            f"Cannot start in production with missing settings: {', '.join(missing_settings)}"
        )
