from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """MediaForge pipeline settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "MediaForge"
    DEBUG: bool = False

    # --- Database (metadata sink) ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./mediaforge.db"

    # --- Redis (Celery broker) ---
    REDIS_URL: str = "redis://localhost:6379/0"

    # --- Replicate (generation provider) ---
    REPLICATE_API_TOKEN: str = ""
    REPLICATE_BASE_URL: str = "https://api.replicate.com/v1"
    REPLICATE_WEBHOOK_URL: str = ""
    REPLICATE_TIMEOUT: float = 60.0
    PREDICTION_POLL_INTERVAL: float = 2.0   # seconds between polls
    PREDICTION_MAX_WAIT: float = 300.0      # seconds before wait_for_terminal gives up

    # --- Retry policy (shared by provider calls and storage uploads) ---
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 10000
    RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # --- Cloudinary (primary persistent store) ---
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    CLOUDINARY_FOLDER: str = "mediaforge"
    CLOUDINARY_UPLOAD_URL: str = "https://api.cloudinary.com/v1_1"

    # --- Supabase Storage (fallback persistent store) ---
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    SUPABASE_BUCKET: str = "generated-content"

    # --- Asset download / validation ---
    TRUSTED_SOURCE_DOMAINS: str = "replicate.delivery,pbxt.replicate.delivery,tjzk.replicate.delivery"
    STORAGE_MAX_FILE_SIZE: int = 50 * 1024 * 1024  # 50MB
    DOWNLOAD_TIMEOUT: float = 120.0
    UPLOAD_TIMEOUT: float = 180.0

    @property
    def trusted_domains(self) -> tuple[str, ...]:
        """Parsed TRUSTED_SOURCE_DOMAINS, lower-cased."""
        return tuple(
            d.strip().lower() for d in self.TRUSTED_SOURCE_DOMAINS.split(",") if d.strip()
        )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()


def check_storage_config(settings: Settings) -> dict[str, bool]:
    """Report which persistent storage providers have complete credentials."""
    return {
        "cloudinary": all((
            settings.CLOUDINARY_CLOUD_NAME,
            settings.CLOUDINARY_API_KEY,
            settings.CLOUDINARY_API_SECRET,
        )),
        "supabase": all((settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)),
    }
