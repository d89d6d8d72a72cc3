"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Image Job Queue API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_BASE_URL: str = "http://localhost:8000"  # Base URL for file serving

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./imagequeue.db"

    # Redis (reference handle cache)
    REDIS_URL: str = "redis://localhost:6379"
    HANDLE_CACHE_BACKEND: str = "redis"  # redis | memory

    # Image Generation (Gemini 2.5 Flash Image - Nano Banana)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash-image"
    DEFAULT_ASPECT_RATIO: str = "1:1"
    DEFAULT_IMAGE_SIZE: str = "1K"
    GENERATION_TIMEOUT_SECONDS: float = 0  # 0 disables the call-level timeout
    URL_FETCH_TIMEOUT_SECONDS: float = 60.0

    # Storage - S3 settings (optional)
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "us-east-1"

    # Local storage fallback
    LOCAL_STORAGE_PATH: str = "./uploads"
    USE_LOCAL_STORAGE: bool = True

    # Google Cloud Storage
    USE_GCS: bool = False
    GCS_BUCKET_UPLOADS: str = "imagequeue-uploads"
    GCS_BUCKET_OUTPUTS: str = "imagequeue-outputs"
    GCP_PROJECT_ID: str = ""
    SIGNED_URL_TTL_SECONDS: int = 7 * 24 * 60 * 60

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Job queue
    JOB_QUEUE_CONCURRENCY: int = 2
    JOB_QUEUE_MAX_RETRIES: int = 2
    JOB_QUEUE_RETRY_DELAY_SECONDS: float = 0.5
    JOB_QUEUE_TICK_SECONDS: float = 0.025

    # Provider file handles expire after ~48h; refresh with a small buffer
    FILE_URI_TTL_SECONDS: int = 46 * 60 * 60
    FILE_URI_SAFETY_MARGIN_SECONDS: int = 5 * 60

    # Costing
    TOKENS_PER_IMAGE: int = 1290
    PRICE_PER_MILLION_OUTPUT: float = 30.0

    # Manual + context + URL reference images per job
    MAX_REFERENCES: int = 3

    @field_validator('GEMINI_API_KEY', mode='before')
    @classmethod
    def strip_api_keys(cls, v):
        """Strip whitespace and newlines from API keys loaded from secrets."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('JOB_QUEUE_CONCURRENCY', mode='after')
    @classmethod
    def positive_concurrency(cls, v: int) -> int:
        """A non-positive concurrency would never run anything; use the default."""
        return v if v > 0 else 2

    @field_validator('JOB_QUEUE_MAX_RETRIES', mode='after')
    @classmethod
    def non_negative_retries(cls, v: int) -> int:
        return max(v, 0)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
