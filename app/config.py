"""
Application configuration management
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "EventHub"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    API_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./eventhub.db"

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        elif v.startswith('sqlite:///'):
            v = v.replace('sqlite:///', 'sqlite+aiosqlite:///', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # JWT (tokens are issued by the external auth service)
    JWT_SECRET_KEY: str = "change-me-development-only-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    @field_validator('JWT_SECRET_KEY')
    @classmethod
    def validate_jwt_secret_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters long")
        return v

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    LOG_FILE: Optional[str] = None

    # Registration
    REGISTRATION_MAX_RETRIES: int = 1
    ORGANIZER_ROLES: List[str] = ["admin", "organizer"]
    # Roles that may read any event's attendees, not only their own
    ADMIN_ROLES: List[str] = ["admin"]

    # Tickets
    TICKET_QR_BOX_SIZE: int = 10
    TICKET_QR_BORDER: int = 4

    # Cache
    CACHE_ENABLED: bool = True
    CACHE_TTL_EVENTS: int = 300

    @field_validator("CORS_ORIGINS", "ORGANIZER_ROLES", "ADMIN_ROLES", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",")]
        return v

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Create global settings instance
settings = Settings()
