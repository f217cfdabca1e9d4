from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./shopadmin.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["*"]

    # Sessions
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_days: int = 7
    session_cookie_name: str = "token"

    # Login throttling
    login_window_minutes: int = 15
    login_max_attempts: int = 5
    # Keys the login window on X-Forwarded-For / X-Real-IP. A client that can
    # reach the app directly can rotate these headers to dodge the per-IP
    # limit, so disable this unless a trusted proxy overwrites them.
    trust_proxy_headers: bool = True

    # Login attempt audit log
    login_attempt_retention_days: int = 30
    audit_write_timeout_seconds: float = 2.0
    failed_login_lookback_minutes: int = 60
    failed_login_threshold: int = 5

    # Registration
    registration_enabled: bool = True
    register_rate_limit: str = "3/minute"

    # Default admin, seeded on first start
    admin_email: str = "admin@example.com"
    admin_password: str = "admin123"
    admin_first_name: str = "Admin"
    admin_last_name: str = "User"

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\n🚨 FATAL: SHOPADMIN_JWT_SECRET is set to the default value.\n"
                "   Set SHOPADMIN_JWT_SECRET to a strong random string before "
                "running in production.\n"
                "   Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\"\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set SHOPADMIN_JWT_SECRET env var."
            )
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def secure_cookies(self) -> bool:
        # Browsers drop Secure cookies on plain-http localhost
        return not self.is_development

    class Config:
        env_prefix = "SHOPADMIN_"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
