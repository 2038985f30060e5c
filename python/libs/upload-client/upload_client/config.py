"""
Configuration for the upload client.
Defaults match the service's multipart limits; override via UPLOAD_CLIENT_* variables.
"""

from pydantic_settings import BaseSettings

MIB = 1024 * 1024
GIB = 1024 * MIB


class ClientSettings(BaseSettings):
    """Upload client settings loaded from environment variables."""

    # Service
    API_BASE_URL: str = "http://localhost:8000"
    REQUEST_TIMEOUT_SECONDS: float = 300.0

    # Chunking
    CHUNK_SIZE: int = 5 * MIB            # Store minimum for every part but the last
    MAX_CHUNK_COUNT: int = 10000         # Store maximum parts per upload
    MAX_FILE_SIZE: int = 50 * GIB

    # Concurrency
    MAX_CONCURRENT_FILES: int = 10       # Files uploading at once; parts within a file are sequential

    # Retries of a single part on transient errors
    PART_RETRY_ATTEMPTS: int = 3
    PART_RETRY_MIN_WAIT: float = 1.0
    PART_RETRY_MAX_WAIT: float = 10.0

    class Config:
        env_prefix = "UPLOAD_CLIENT_"
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
client_settings = ClientSettings()
