"""Application Configuration"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application
    APP_NAME: str = "Scheduled Test Orchestrator"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"  # development, staging, production

    # Database - MySQL
    MYSQL_HOST: str = "localhost"
    MYSQL_PORT: int = 3306
    MYSQL_USER: str = "root"
    MYSQL_PASSWORD: str = ""
    MYSQL_DATABASE: str = "test_orchestrator"

    # Full async SQLAlchemy URL, takes precedence over the MYSQL_* fields
    DATABASE_URL: Optional[str] = None

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_CHECK_INTERVAL_SECONDS: float = 30.0
    SCHEDULE_DEFAULT_TIMEZONE: str = "UTC"

    # Test runners
    RUNNER_WORKDIR: str = "."
    NPX_COMMAND: str = "npx"
    K6_COMMAND: str = "k6"
    JEST_TIMEOUT_SECONDS: float = 30.0
    PLAYWRIGHT_TIMEOUT_SECONDS: float = 60.0
    K6_TIMEOUT_SECONDS: float = 180.0
    K6_VERSION_CHECK_TIMEOUT_SECONDS: float = 10.0
    PLAYWRIGHT_DEBUG_PORT_BASE: int = 9222
    PLAYWRIGHT_DEBUG_PORT_SPAN: int = 1000
    RUNNER_MAX_OUTPUT_BYTES: int = 10 * 1024 * 1024
    PROCESS_TERMINATE_GRACE_SECONDS: float = 5.0

    # Metrics - Prometheus scrape endpoint, disabled when unset
    METRICS_PORT: Optional[int] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @field_validator('MYSQL_PORT', 'PLAYWRIGHT_DEBUG_PORT_BASE', 'METRICS_PORT')
    @classmethod
    def validate_port(cls, v: Optional[int], info) -> Optional[int]:
        """Validate that port numbers are in the valid range (1-65535)"""
        if v is None:
            return v
        if v < 1 or v > 65535:
            raise ValueError(f'{info.field_name} must be between 1 and 65535, got {v}')
        return v

    @field_validator(
        'SCHEDULER_CHECK_INTERVAL_SECONDS',
        'JEST_TIMEOUT_SECONDS',
        'PLAYWRIGHT_TIMEOUT_SECONDS',
        'K6_TIMEOUT_SECONDS',
        'K6_VERSION_CHECK_TIMEOUT_SECONDS',
        'PROCESS_TERMINATE_GRACE_SECONDS',
    )
    @classmethod
    def validate_positive_seconds(cls, v: float, info) -> float:
        """Validate that intervals and timeouts are strictly positive"""
        if v <= 0:
            raise ValueError(f'{info.field_name} must be greater than 0, got {v}')
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log level is one of the standard Python logging levels"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of {valid_levels}, got {v}')
        return v.upper()

    @field_validator('SCHEDULE_DEFAULT_TIMEZONE')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the default schedule timezone is a known IANA zone"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f'SCHEDULE_DEFAULT_TIMEZONE is not a valid timezone: {v}')
        return v


settings = Settings()
