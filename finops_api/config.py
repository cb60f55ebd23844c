"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from typing import Dict, List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Note: get_settings() is cached, so tests that change the environment
    need to call get_settings.cache_clear().
    """

    # Database settings
    DATABASE_URL: str = "postgresql://localhost/finops_dev"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Security settings
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Sessions and OAuth state live in Redis (the KV store)
    SESSION_TTL_SECONDS: int = 24 * 60 * 60
    OAUTH_STATE_TTL_SECONDS: int = 600
    AUTH_COOKIE_NAME: str = "token"
    AUTH_COOKIE_SECURE: bool = True

    REDIS_URL: str = "redis://localhost:6379/0"

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    APP_URL: str = "http://localhost:5173"
    API_URL: str = "http://localhost:8000"

    # OAuth login providers
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    MICROSOFT_CLIENT_ID: str = ""
    MICROSOFT_CLIENT_SECRET: str = ""

    # Data-source integrations: {"quickbooks": {"client_id": ..., "client_secret": ...}}
    INTEGRATION_OAUTH_CLIENTS: Dict[str, Dict[str, str]] = {}

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "https://finops.app",
    ]
    ALLOWED_ORIGIN_REGEX: str = r"https://.*\.finops\.app"

    # Tenant resolution
    TENANT_BASE_DOMAIN_PATTERN: str = r"^([a-z0-9-]+)\.finops\.(app|dev|local)"
    DEFAULT_TENANT: str = "demo"
    TENANT_CACHE_TTL_SECONDS: int = 300
    TENANT_MAPPING_TTL_SECONDS: int = 24 * 60 * 60

    # Rate limiting (fixed window, requests per window by role)
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMITS: Dict[str, int] = {
        "OWNER": 1000,
        "ADMIN": 500,
        "MANAGER": 300,
        "ANALYST": 200,
        "VIEWER": 100,
        "anonymous": 50,
    }

    # Report blob storage
    REPORT_STORAGE_DIR: str = "./var/reports"

    # Outgoing mail. Without SMTP_HOST mail is written to the log.
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_STARTTLS: bool = True
    MAIL_FROM: str = "FinOps <no-reply@finops.app>"

    # Password reset links
    PASSWORD_RESET_TTL_SECONDS: int = 60 * 60

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures we only instantiate settings once.
    """
    return Settings()
