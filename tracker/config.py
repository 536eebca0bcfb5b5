"""
Runtime settings for the tracker API.

Every field can be overridden by the upper-cased environment variable
of the same name, or from a .env file in the working directory.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All tunables, resolved once per process by get_settings()."""

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    app_url: str = "http://localhost:3000"  # Used in email links

    # ==========================================================================
    # Authentication
    # ==========================================================================

    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_refresh_secret_key: str = "dev-jwt-refresh-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30
    jwt_refresh_token_expire_days: int = 7

    # One-time email action tokens (verification, password reset)
    action_token_expire_minutes: int = 60

    # Cookie names for browser clients
    access_cookie_name: str = "jwt"
    refresh_cookie_name: str = "refresh"

    # Cache key prefixes
    access_blacklist_prefix: str = "bl_"
    refresh_blacklist_prefix: str = "blacklist_"
    action_token_prefix: str = "action_"

    # Google sign-in; disabled while either value is empty
    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""

    # ==========================================================================
    # AWS
    # ==========================================================================

    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_s3_bucket: str = "tracker-attachments"
    aws_ses_from_email: str = ""

    # ==========================================================================
    # Email
    # ==========================================================================

    email_backend: str = "console"  # "console" or "ses"

    # ==========================================================================
    # Storage
    # ==========================================================================

    data_dir: str = "./data"

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    redis_url: str = ""
    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_aws(self) -> bool:
        """True when AWS credentials are present."""
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, read from the environment on first use."""
    return Settings()
