"""Application configuration"""

import logging
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "AccessGate API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development | staging | production

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours

    # Stores
    # WHY: "memory" keeps everything in-process (single worker, dev/offline);
    # "sql" persists through SQLAlchemy and is required for multiple workers.
    STORE_BACKEND: str = "sql"
    DATABASE_URL: str = "sqlite+aiosqlite:///./accessgate.db"
    CREATE_TABLES_ON_STARTUP: bool = False
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Redis (rate limiting middleware)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Address detection
    # WHY: "headers" reads proxy headers of the incoming request,
    # "remote" asks an external IP-echo endpoint.
    IP_DETECTION_MODE: str = "headers"
    IP_DETECTION_URL: Optional[str] = None
    # False when clients reach the service directly; forwarding headers are
    # then ignored and only the TCP peer address is used
    TRUST_FORWARDED_HEADERS: bool = True

    # Development/offline bypass of the address check.
    # Never allowed in production (see validator below).
    ACCESS_CHECK_BYPASS: bool = False

    # Verification tokens
    REGISTRATION_TOKEN_HOURS: int = 12
    LOGIN_VERIFICATION_MINUTES: int = 5
    TOKEN_ISSUE_LIMIT: int = 5
    TOKEN_ISSUE_WINDOW_SECONDS: int = 3600
    MAX_CODE_ATTEMPTS: int = 5
    TOKEN_CODE_LENGTH: int = 6
    # How long a redeemed login-verification code keeps a user verified
    LOGIN_VERIFIED_HOURS: int = 24

    # Link base used in registration notifications
    FRONTEND_URL: str = "http://localhost:3000"
    # The mock channel keeps delivered notices (codes included) only when set
    MOCK_NOTIFICATION_RECORD: bool = False

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @model_validator(mode="after")
    def _check_bypass_environment(self) -> "Settings":
        """
        Refuse to start a production deployment with the address check bypassed.

        WHY: The bypass makes every caller look authorized; it must be an
        explicit development choice, never something a deployed
        environment inherits by accident.
        """
        if self.ACCESS_CHECK_BYPASS and self.is_production:
            raise ValueError(
                "ACCESS_CHECK_BYPASS cannot be enabled when ENVIRONMENT=production"
            )
        if self.STORE_BACKEND not in ("sql", "memory"):
            raise ValueError(f"Unknown STORE_BACKEND: {self.STORE_BACKEND}")
        if self.IP_DETECTION_MODE not in ("headers", "remote"):
            raise ValueError(f"Unknown IP_DETECTION_MODE: {self.IP_DETECTION_MODE}")
        if self.IP_DETECTION_MODE == "remote" and not self.IP_DETECTION_URL:
            raise ValueError("IP_DETECTION_URL is required when IP_DETECTION_MODE=remote")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
