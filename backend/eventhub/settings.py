"""Centralized application settings using Pydantic BaseSettings.

Single import point for configuration. Modules that only need a value at
call time should go through `get_settings()` instead of reading `os.environ`.
"""
from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    # Core
    app_name: str = "EventHub Backend"
    environment: str = Field("development", alias="ENVIRONMENT")
    debug: bool = False

    # Database
    mongo_uri: str = Field("mongodb://mongo:27017/eventhub", alias="MONGO_URI")
    mongo_db: str = Field("eventhub", alias="MONGO_DB")

    # Auth (token validation only; issuance lives elsewhere)
    jwt_secret: str = Field("", alias="JWT_SECRET")
    jwt_issuer: Optional[str] = Field(None, alias="JWT_ISSUER")
    access_token_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRES_MINUTES")

    # Registration rules
    cancellation_window_hours: int = Field(24, alias="CANCELLATION_WINDOW_HOURS")

    # Email / SMTP
    smtp_host: Optional[str] = Field(None, alias="SMTP_HOST")
    smtp_port: Optional[int] = Field(None, alias="SMTP_PORT")
    smtp_user: Optional[str] = Field(None, alias="SMTP_USER")
    smtp_pass: Optional[str] = Field(None, alias="SMTP_PASS")
    smtp_from: str = Field("events@eventhub.local", alias="SMTP_FROM_ADDRESS")
    smtp_use_tls: bool = Field(True, alias="SMTP_USE_TLS")
    smtp_timeout_seconds: int = Field(10, alias="SMTP_TIMEOUT_SECONDS")
    smtp_max_retries: int = Field(2, alias="SMTP_MAX_RETRIES")

    # CORS
    allowed_origins: str = Field("*", alias="ALLOWED_ORIGINS")
    cors_allow_credentials: bool = Field(False, alias="CORS_ALLOW_CREDENTIALS")


@lru_cache()
def get_settings() -> Settings:
    s = Settings()  # type: ignore[call-arg]

    env = (s.environment or os.getenv('ENVIRONMENT', '')).lower()
    if env in ('production', 'prod'):
        if not s.jwt_secret or s.jwt_secret in ('change-me', ''):
            raise RuntimeError('JWT_SECRET must be set to a secure value in production')
        if not s.allowed_origins or s.allowed_origins.strip() == '*':
            raise RuntimeError('ALLOWED_ORIGINS must be set to specific origins in production (no "*")')
    if s.cancellation_window_hours < 0:
        raise RuntimeError('CANCELLATION_WINDOW_HOURS cannot be negative')

    return s


__all__ = ["Settings", "get_settings"]
