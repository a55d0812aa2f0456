"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "File Toolbox"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Artifact Storage
    # ==========================================================================
    # Freshly uploaded, unprocessed files
    INTAKE_DIR: Path = Path("./data/uploads")
    # Processed files, served under PUBLIC_OUTPUT_PATH
    OUTPUT_DIR: Path = Path("./data/outputs")
    PUBLIC_OUTPUT_PATH: str = "/outputs"

    # Multipart field carrying the uploaded files
    UPLOAD_FIELD_NAME: str = "files"
    MAX_UPLOAD_BYTES: int = 209715200  # 200MB per file

    # ==========================================================================
    # Reclamation
    # ==========================================================================
    RETENTION_SECONDS: float = 3600.0  # 1 hour
    # Delete intake and scratch files as soon as a response is produced
    EARLY_INTAKE_CLEANUP: bool = True

    # ==========================================================================
    # Transform Settings
    # ==========================================================================
    FFMPEG_BINARY: str = "ffmpeg"
    TRANSFORM_TIMEOUT_SECONDS: float = 600.0

    # Lossy video compression target (constant rate factor, lower = better)
    VIDEO_CRF: int = 28

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "*"

    # Optional override for the externally visible base URL (e.g. CDN host)
    PUBLIC_BASE_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
