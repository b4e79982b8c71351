"""Application Configuration"""

from typing import Annotated, Any, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "AGASPAY Billing Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database (pending payment markers and payment records)
    DATABASE_URL: str = "postgresql://localhost:5432/agaspay"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Billing backend (bills, connection state, payment initiation)
    BILLING_API_URL: str = "http://localhost:3000/api/v1"
    BILLING_API_TOKEN: str = ""
    BILLING_API_TIMEOUT: float = 15.0

    # Payment lifecycle
    # Comma-separated in the environment
    PAYMENT_METHODS: Annotated[List[str], NoDecode] = ["gcash", "paymaya"]
    PAYMENT_MARKER_RETENTION_HOURS: int = 24
    DUE_SOON_DAYS: int = 3
    PORTAL_TIMEZONE: str = "Asia/Manila"
    BILLING_SUMMARY_CACHE_SECONDS: int = 60

    # CORS (5173 = Vite default dev server)
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    ALLOWED_METHODS: str = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
    ALLOWED_HEADERS: str = "*"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    PAYMENT_SUBMIT_RATE_LIMIT: str = "5/minute"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("ALLOWED_ORIGINS", "ALLOWED_METHODS")
    @classmethod
    def split_csv(cls, v: str) -> List[str]:
        return [item.strip() for item in v.split(",") if item.strip()]

    @field_validator("PAYMENT_METHODS", mode="before")
    @classmethod
    def parse_payment_methods(cls, v: Any) -> List[str]:
        """E-wallet provider ids, compared case-insensitively"""
        if isinstance(v, str):
            v = v.split(",")
        return [str(method).strip().lower() for method in v if str(method).strip()]

    @field_validator("PORTAL_TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError:
            raise ValueError(f"Unknown timezone {v!r}")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()
