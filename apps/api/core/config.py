"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (sqlite URLs are accepted for local runs and tests).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="coach_portal")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration (ignored for sqlite)
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Session and activation token signing - REQUIRED
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=7 * 24 * 60)  # 7 days
    ACTIVATION_TOKEN_TTL_MINUTES: int = Field(default=24 * 60, ge=15)

    # First administrator (bootstrap). Bootstrap is skipped when either is missing.
    ADMIN_EMAIL: Optional[str] = Field(default=None)
    ADMIN_PASSWORD: Optional[str] = Field(default=None)
    ADMIN_NAME: str = Field(default="Head Administrator")

    # Session reconciliation
    # Upper bound on the startup "current session" probe before the UI leaves the loading state.
    SESSION_FAILSAFE_TIMEOUT_S: float = Field(default=5.0, gt=0)
    # Deadline for one whole profile resolution; past it the fallback profile is used.
    # Must stay below the failsafe so the fallback arrives first.
    PROFILE_FETCH_TIMEOUT_S: float = Field(default=4.0, gt=0)
    # Shared demo accounts (never persisted).
    DEMO_LOGIN_ENABLED: bool = Field(default=False)

    # Activation links
    # e.g., "http://localhost:3000" or "https://portal.example.com"
    WEB_APP_BASE_URL: str = Field(default="http://localhost:3000")
    ACTIVATION_QUERY_PARAM: str = Field(default="activate")

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Email Configuration
    EMAIL_ENABLED: bool = Field(default=False)
    SMTP_SERVER: str = Field(default="localhost")
    SMTP_PORT: int = Field(default=587)
    SMTP_USERNAME: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    FROM_EMAIL: str = Field(default="noreply@coachportal.local")
    FROM_NAME: str = Field(default="Coach Portal")

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def check_resolution_deadline(self) -> "Settings":
        if self.PROFILE_FETCH_TIMEOUT_S >= self.SESSION_FAILSAFE_TIMEOUT_S:
            raise ValueError(
                "PROFILE_FETCH_TIMEOUT_S must be lower than SESSION_FAILSAFE_TIMEOUT_S"
            )
        return self


# Global settings instance
settings = Settings()
