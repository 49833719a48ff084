"""Application configuration using pydantic-settings."""

import os
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TRANSFORM_PROMPT = (
    "Edit my selfie into a flashy night paparazzi shot: diamond grill, iced-out watch "
    "by my face, 1 ring; harsh on-camera flash, slight motion blur, VHS grain, cool blue "
    "tint, shallow depth of field, high contrast. Use subtle, high-intensity micro-glints "
    "only on the jewelry (grill/watch/rings), tiny, sparse, edge-focused highlights with "
    "no bloom or lens flares; zero sparkles on skin, hair, clothes, or background; The "
    "background is black and dark and blurry. 35mm film style with noticeable grain, "
    "dust, and scratches."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Dripped Out"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8080

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/dripped_out.db"

    # Database connection pooling (for PostgreSQL/MySQL)
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600
    db_pool_pre_ping: bool = True

    # Directories
    base_dir: Path = Path(__file__).parent.parent
    logs_dir: Path = Path("./logs")
    data_dir: Path = Path("./data")
    blobs_dir: Path = Path("./data/blobs")

    # Blob serving
    blob_url_prefix: str = "/api/blobs"
    max_upload_size_mb: int = 10

    # Transformation provider (Gemini)
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash-image-preview"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    transform_prompt: str = DEFAULT_TRANSFORM_PROMPT
    transform_timeout: float = 120.0

    # Admin
    admin_delete_token: str | None = None

    # Dispatching
    dispatch_sweep_interval: int = 30
    dispatch_grace_seconds: int = 10
    stale_generation_timeout: int = 600  # processing longer than this is stalled
    stream_poll_interval: float = 1.0

    # Submission rate limit (per client IP)
    submit_rate_limit_calls: int = 10
    submit_rate_limit_period: int = 60

    @model_validator(mode="after")
    def make_paths_absolute(self) -> "Settings":
        """Convert relative paths to absolute based on base_dir."""
        if not self.logs_dir.is_absolute():
            self.logs_dir = self.base_dir / self.logs_dir
        if not self.data_dir.is_absolute():
            self.data_dir = self.base_dir / self.data_dir
        if not self.blobs_dir.is_absolute():
            self.blobs_dir = self.base_dir / self.blobs_dir

        # Blank env values mean "not configured"
        if self.admin_delete_token is not None and not self.admin_delete_token.strip():
            self.admin_delete_token = None
        if self.gemini_api_key is not None and not self.gemini_api_key.strip():
            self.gemini_api_key = None

        import warnings

        suppress_config_warnings = bool(os.getenv("SUPPRESS_CONFIG_WARNINGS"))

        if not suppress_config_warnings:
            if not self.gemini_api_key:
                warnings.warn(
                    "GEMINI_API_KEY is not set; every generation will fail.",
                    stacklevel=2,
                )

            if self.admin_delete_token and len(self.admin_delete_token) < 16:
                warnings.warn(
                    "ADMIN_DELETE_TOKEN is short; set a strong random value (16+ chars).",
                    stacklevel=2,
                )

        return self

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        import logging

        logger = logging.getLogger(__name__)

        for dir_path in [self.logs_dir, self.data_dir, self.blobs_dir]:
            try:
                dir_path.mkdir(parents=True, exist_ok=True)
            except (PermissionError, OSError) as e:
                logger.warning(
                    f"Could not create directory {dir_path}: {e}. "
                    "The directory may already exist or have permission issues."
                )


_settings_cache: Settings | None = None


def get_settings(reload: bool = False) -> Settings:
    """Get settings instance with optional reload."""
    global _settings_cache
    if _settings_cache is None or reload:
        _settings_cache = Settings()
    return _settings_cache
