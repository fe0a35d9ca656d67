"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Optional, Union
import os

from electionpoll.core.constants import ACCESS_TOKEN_EXPIRE_MINUTES as DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Database - Support both full URL and individual components
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_HOST: Optional[str] = None
    POSTGRES_PORT: Optional[str] = None
    POSTGRES_DB: Optional[str] = None

    # Security
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES

    # Phones allowed to log in as administrators - list or comma-separated string
    ADMIN_PHONES: Union[List[str], str] = []

    # CORS - Can be a list or comma-separated string
    CORS_ORIGINS: Union[list, str] = ["*"]  # In production, specify your domain

    @field_validator('CORS_ORIGINS', 'ADMIN_PHONES', mode='before')
    @classmethod
    def parse_comma_separated(cls, v):
        """Parse list settings from comma-separated string or list."""
        if isinstance(v, str):
            # Split by comma and strip whitespace
            return [item.strip() for item in v.split(',') if item.strip()]
        return v

    # Application
    APP_TITLE: str = "Election Poll Engine"
    APP_DESCRIPTION: str = "Verified public polls with a fair winner lottery"
    APP_VERSION: str = "1.0.0"

    # Environment
    ENVIRONMENT: str = "development"  # development, staging, production

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    # Verification codes
    OTP_LENGTH: int = 6
    OTP_EXPIRY_MINUTES: int = 10

    # Poll lifecycle
    POLL_AUTO_ACTIVATE: bool = False  # Newly created polls start as pending unless enabled
    SCHEDULER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 60

    # Winner notifications: losing voters notified at most
    WINNER_NOTIFY_LIMIT: int = 10

    # Read-only tally queries are retried on transient database errors
    TALLY_READ_RETRIES: int = 3

    # Server-Sent Events (SSE) Configuration
    SSE_KEEPALIVE_SECONDS: int = 15  # Idle streams re-send the tally this often

    # WhatsApp Cloud API (notification sink)
    WHATSAPP_API_URL: str = "https://graph.facebook.com/v24.0/"
    WHATSAPP_PHONE_NUMBER_ID: Optional[str] = None
    WHATSAPP_ACCESS_TOKEN: Optional[str] = None
    WHATSAPP_TIMEOUT_SECONDS: float = 10.0

    # Database Connection Pool Configuration
    DB_POOL_SIZE: int = 15  # Steady-state connection pool size
    DB_MAX_OVERFLOW: int = 25  # Additional connections for spikes (total max: pool_size + max_overflow)

    def get_database_url(self) -> str:
        """
        Get database URL from either DATABASE_URL or individual components.
        Priority: DATABASE_URL > individual components > default (dev only)
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # Build from individual components if provided
        if all([self.POSTGRES_USER, self.POSTGRES_PASSWORD,
                self.POSTGRES_HOST, self.POSTGRES_DB]):
            port = self.POSTGRES_PORT or "5432"
            return (
                f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{port}/{self.POSTGRES_DB}"
            )

        # Development fallback only
        if self.ENVIRONMENT in ("development", "test"):
            return "sqlite:///./electionpoll.db"

        # Production should always provide database credentials
        raise ValueError(
            "Database configuration missing. Provide either DATABASE_URL or "
            "all of: POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_DB"
        )

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.WHATSAPP_PHONE_NUMBER_ID and self.WHATSAPP_ACCESS_TOKEN)

    def validate_production_config(self) -> None:
        """Validate that production-critical settings are properly configured."""
        if self.ENVIRONMENT == "production":
            issues = []
            warnings = []

            if self.SECRET_KEY == "your-secret-key-change-in-production":
                issues.append("SECRET_KEY must be changed from default value")

            if not self.ADMIN_PHONES:
                warnings.append("ADMIN_PHONES is empty; nobody can log in as administrator")

            if not self.whatsapp_configured:
                warnings.append("WhatsApp credentials missing; verification codes will only be logged")

            if self.CORS_ORIGINS == ["*"]:
                issues.append("CORS_ORIGINS should be restricted to specific domains")

            if warnings:
                print("⚠️  Production configuration warnings:")
                for warning in warnings:
                    print(f"  - {warning}")

            if issues:
                raise ValueError(
                    "Production configuration errors:\n" +
                    "\n".join(f"  - {issue}" for issue in issues)
                )


settings = Settings()

# Validate production configuration on startup
if os.getenv("ENVIRONMENT") == "production":
    settings.validate_production_config()
