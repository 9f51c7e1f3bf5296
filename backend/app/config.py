"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "TBI Connect"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/tbi_connect"
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5

    # Redis (rate limiting)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Public URLs embedded in outbound emails
    APP_BASE_URL: str = "http://localhost:5173"  # verify-email and claim links
    RSVP_BASE_URL: Optional[str] = None  # defaults to {APP_BASE_URL}/api/v1/events/rsvp

    # Identity provider (GoTrue admin API). The service-role key grants the
    # privileged lookups used for linking and provisioning.
    IDENTITY_BASE_URL: Optional[str] = None
    IDENTITY_SERVICE_ROLE_KEY: Optional[str] = None
    IDENTITY_TIMEOUT_SECONDS: float = 10.0

    # Email delivery: "resend" (HTTP API) or "smtp"
    EMAIL_BACKEND: str = "resend"
    EMAIL_TIMEOUT_SECONDS: float = 10.0
    EMAIL_FROM_ADDRESS: str = "noreply@mariantbi.org"
    EMAIL_FROM_NAME: str = "MARIAN TBI Connect"
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True  # STARTTLS on 587. Set False for SSL on 465.

    # Verification / re-verification
    VERIFICATION_TOKEN_TTL_HOURS: int = 24
    VERIFICATION_BRAND_NAME: str = "Marian Alumni Network"
    REVERIFICATION_SWEEP_HOUR: int = 9  # UTC hour for the daily beat entry

    # Access grants
    PORTAL_NAME: str = "MARIAN TBI Connect"
    ACCESS_CLAIM_TTL_HOURS: int = 24

    # Event invitations
    EVENT_INVITE_TTL_HOURS: int = 72
    EVENT_INVITE_BATCH_SIZE: int = 2
    EVENT_INVITE_BATCH_DELAY_SECONDS: float = 1.8

    # Rate limiting for public token endpoints
    TOKEN_ENDPOINT_MAX_REQUESTS: int = 10
    TOKEN_ENDPOINT_WINDOW_SECONDS: int = 60

    # Monitoring
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # 'text' or 'json' (json for production)
    METRICS_ENABLED: bool = True
    METRICS_ADMIN_PORT: int = 9090
    METRICS_USERNAME: str = "admin"
    METRICS_PASSWORD: str = "metrics_admin"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @field_validator("EMAIL_BACKEND")
    @classmethod
    def validate_email_backend(cls, v: str) -> str:
        """Only the two shipped email adapters are accepted."""
        backend = v.strip().lower()
        if backend not in ("resend", "smtp"):
            raise ValueError("EMAIL_BACKEND must be 'resend' or 'smtp'")
        return backend

    @field_validator("APP_BASE_URL", "RSVP_BASE_URL", "IDENTITY_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    @property
    def rsvp_url(self) -> str:
        return self.RSVP_BASE_URL or f"{self.APP_BASE_URL}/api/v1/events/rsvp"

    @property
    def email_configured(self) -> bool:
        """True when the selected email backend has its credential."""
        if self.EMAIL_BACKEND == "smtp":
            return bool(self.SMTP_HOST)
        return bool(self.RESEND_API_KEY)

    def validate_runtime(self) -> None:
        """
        Fail fast on missing deployment configuration.

        The identity provider is always required: linking and granting cannot
        run without it. A missing email credential is tolerated outside
        production because the grant workflow degrades to returning links.

        Raises:
            ConfigurationError: naming every missing field
        """
        from app.core.errors import ConfigurationError

        missing = []
        if not self.IDENTITY_BASE_URL:
            missing.append("IDENTITY_BASE_URL")
        if not self.IDENTITY_SERVICE_ROLE_KEY:
            missing.append("IDENTITY_SERVICE_ROLE_KEY")
        if self.ENVIRONMENT == "production" and not self.email_configured:
            missing.append("SMTP_HOST" if self.EMAIL_BACKEND == "smtp" else "RESEND_API_KEY")

        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing},
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
