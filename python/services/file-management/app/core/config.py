"""
Configuration management for File Vault Service.
Loads environment variables and defines rate-limit route classes.
"""

from enum import Enum
from typing import List, Union

from pydantic import model_validator
from pydantic_settings import BaseSettings


class RouteClass(str, Enum):
    """Rate-limited groups of endpoints."""
    UPLOAD = "upload"
    FILES = "files"
    AUTH = "auth"
    AUTH_REQUEST_CODE = "auth-request-code"


class RateLimitBackend(str, Enum):
    """Where sliding-window counters are kept."""
    REDIS = "redis"
    LOCAL = "local"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "File Vault Service"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: Union[str, List[str]] = ["*"]

    # S3-compatible object store
    S3_ENDPOINT: str              # e.g. http://minio:9000 or https://s3.eu-central-1.amazonaws.com
    S3_ACCESS_KEY: str
    S3_SECRET_KEY: str
    S3_BUCKET: str
    S3_REGION: str = "us-east-1"
    S3_MAX_WORKERS: int = 8       # Thread pool size for blocking boto3 calls

    # Download URLs
    PRESIGNED_URL_EXPIRATION: int = 3600  # 1 hour in seconds

    # Relational store
    DATABASE_URL: str             # e.g. postgresql+asyncpg://user:pass@db/vault

    # Expiring key-value store
    REDIS_URL: str = "redis://localhost:6379/0"

    # Authentication
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_SECONDS: int = 30 * 24 * 3600
    VERIFICATION_CODE_TTL_SECONDS: int = 15 * 60
    ALLOWED_EMAIL_DOMAINS: Union[str, List[str]] = []  # Empty means any domain

    # Email notifier (SMTP)
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM: str = "no-reply@localhost"

    # Rate limiting
    RATE_LIMIT_BACKEND: RateLimitBackend = RateLimitBackend.REDIS
    RATE_LIMIT_FAIL_OPEN: bool = False  # Reject when the counter store is down
    RATE_LIMIT_UPLOAD: str = "60/50"    # "<interval seconds>/<max requests>"
    RATE_LIMIT_FILES: str = "60/100"
    RATE_LIMIT_AUTH: str = "60/5"
    RATE_LIMIT_AUTH_REQUEST_CODE: str = "60/3"

    # Upload sessions
    UPLOAD_SESSION_TTL_SECONDS: int = 24 * 3600   # Idle sessions older than this are aborted
    SESSION_SWEEP_INTERVAL_SECONDS: int = 300
    SESSION_TOMBSTONE_SECONDS: int = 3600         # How long finished sessions are remembered
    MAX_PART_SIZE_MB: int = 64

    @model_validator(mode="before")
    @classmethod
    def parse_lists(cls, values):
        """Parse comma-separated list settings."""
        for name in ("CORS_ORIGINS", "ALLOWED_EMAIL_DOMAINS"):
            if isinstance(values.get(name), str):
                values[name] = [
                    item.strip().lower() if name == "ALLOWED_EMAIL_DOMAINS" else item.strip()
                    for item in values[name].split(",")
                    if item.strip()
                ]
        return values

    @property
    def max_part_size(self) -> int:
        """Largest accepted part body in bytes."""
        return self.MAX_PART_SIZE_MB * 1024 * 1024

    def rate_limit_for(self, route_class: RouteClass) -> tuple[int, int]:
        """
        Resolve (interval_seconds, limit) for a route class.

        Args:
            route_class: Rate-limited endpoint group

        Returns:
            Tuple of window length in seconds and max requests per window
        """
        raw = {
            RouteClass.UPLOAD: self.RATE_LIMIT_UPLOAD,
            RouteClass.FILES: self.RATE_LIMIT_FILES,
            RouteClass.AUTH: self.RATE_LIMIT_AUTH,
            RouteClass.AUTH_REQUEST_CODE: self.RATE_LIMIT_AUTH_REQUEST_CODE,
        }[route_class]
        interval, _, limit = raw.partition("/")
        return int(interval), int(limit)

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
