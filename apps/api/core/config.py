"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
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
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="recovery_companion")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set (sqlite for tests).
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # JWT Authentication - tokens are issued by the identity provider.
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT verification key shared with the identity provider (32+ chars)."
    )
    JWT_ALGORITHM: str = Field(default="HS256")

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_PER_MINUTE: int = Field(default=60)
    CHAT_RATE_LIMIT_PER_MINUTE: int = Field(default=20)

    # External API Configuration
    # Upper bound (seconds) on every text-generation call, streaming included.
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

    # Text generation (Gemini)
    GOOGLE_AI_API_KEY: Optional[str] = Field(default=None)
    COMPANION_REPLY_MODEL: str = Field(default="gemini-2.5-flash")
    COMPANION_EXTRACTION_MODEL: str = Field(default="gemini-2.5-flash")
    REPLY_MAX_OUTPUT_TOKENS: int = Field(default=1024)
    REPLY_TEMPERATURE: float = Field(default=0.7)

    # Companion engine
    EXTRACTION_CONFIDENCE_THRESHOLD: int = Field(default=70, ge=0, le=100)
    CONTEXT_MESSAGE_LIMIT: int = Field(default=10)
    CONTEXT_CHECK_IN_LIMIT: int = Field(default=3)
    CONTEXT_MILESTONE_LIMIT: int = Field(default=5)

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")
    CELERY_TASK_ALWAYS_EAGER: bool = Field(default=False)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)


# Global settings instance
settings = Settings()
