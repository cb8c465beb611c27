"""
HRMS Suite - Configuration
==========================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "HRMS Suite"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
        "http://localhost:3002",
        "http://localhost:8080",
        "http://localhost:8081",
    ]

    # ==========================================================================
    # Application origins (one per independently deployed front-end)
    # ==========================================================================
    AUTH_URL: str = "http://localhost:3000"
    PORTAL_URL: str = "http://localhost:3001"
    HRMS_URL: str = "http://localhost:3002"
    ADMIN_URL: str = "http://localhost:8080"
    STATUS_URL: str = "http://localhost:8081"

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./hrms.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL

    # ==========================================================================
    # Identity provider (Supabase Auth / GoTrue)
    # ==========================================================================
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    IDENTITY_TIMEOUT_SECONDS: float = 10.0

    # ==========================================================================
    # Source control provider (GitHub)
    # ==========================================================================
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_OWNER: str = "hrms-org"
    GITHUB_REPO: str = "hrms-system"
    GITHUB_WEBHOOK_SECRET: Optional[str] = None
    GITHUB_TIMEOUT_SECONDS: float = 15.0

    # ==========================================================================
    # Shared session
    # ==========================================================================
    SESSION_DURATION_MINUTES: int = 60
    SESSION_REFRESH_THRESHOLD_MINUTES: int = 5
    SESSION_ACTIVITY_WINDOW_MINUTES: int = 15
    SESSION_CHECK_INTERVAL_SECONDS: float = 60.0
    SESSION_ACTIVITY_WRITE_INTERVAL_SECONDS: int = 5
    SESSION_STORAGE_KEY: str = "hrms_shared_session"
    SESSION_ACTIVITY_KEY: str = "hrms_last_activity"

    # ==========================================================================
    # Cross-app hand-off codes
    # ==========================================================================
    SECRET_KEY: str = "CHANGE-ME-IN-PRODUCTION-USE-LONG-RANDOM-STRING"
    ALGORITHM: str = "HS256"
    HANDOFF_CODE_TTL_SECONDS: int = 60

    # Role -> application that receives the user after login
    ROLE_APP_MAP: dict[str, str] = {
        "admin": "admin",
        "super_admin": "admin",
        "hr": "hrms",
        "manager": "hrms",
        "employee": "portal",
    }

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @computed_field  # type: ignore[misc]
    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"

    def app_url(self, app: str) -> str:
        """Base URL of a front-end application by short name."""
        urls = {
            "auth": self.AUTH_URL,
            "portal": self.PORTAL_URL,
            "hrms": self.HRMS_URL,
            "admin": self.ADMIN_URL,
            "status": self.STATUS_URL,
        }
        try:
            return urls[app]
        except KeyError:
            raise ValueError(f"Unknown application: {app}") from None

    def app_for_role(self, role: Optional[str]) -> str:
        return self.ROLE_APP_MAP.get((role or "").lower(), "portal")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
