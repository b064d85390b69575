"""
ClipChain Configuration
Centralized settings management using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List
from functools import lru_cache
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "ClipChain"
    debug: bool = False
    app_version: str = "0.3.0"

    # ==========================================================================
    # Google Veo / Gemini
    # ==========================================================================
    veo_api_key: str = Field(default="", description="Veo video generation API key")
    gemini_api_key: str = Field(default="", description="Gemini API key (image analysis)")
    veo_model: str = Field(default="veo-3.1-fast-generate-preview", description="Veo model id")
    veo_model_tag: str = Field(default="veo-3.1-fast", description="Model tag recorded in the ledger")
    veo_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language REST base URL"
    )
    analysis_model: str = Field(default="gemini-2.0-flash", description="Model used for character analysis")

    # ==========================================================================
    # Clip Planning & Pricing
    # ==========================================================================
    clip_max_duration: int = Field(default=8, ge=4, le=8, description="Per-clip duration ceiling (seconds)")
    max_clips: int = Field(default=8, ge=1, le=20, description="Max clips in one request")
    credits_per_second: int = Field(default=15, ge=0, description="Credits charged per generated second")

    # ==========================================================================
    # Polling
    # ==========================================================================
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    poll_max_attempts: int = Field(default=120, ge=1)
    inter_clip_delay_seconds: float = Field(default=2.0, ge=0)

    # ==========================================================================
    # Downloads
    # ==========================================================================
    download_timeout_seconds: float = Field(default=120.0, gt=0)
    download_max_retries: int = Field(default=3, ge=0, le=10)
    download_backoff_seconds: float = Field(default=1.0, ge=0)

    # ==========================================================================
    # Stitching
    # ==========================================================================
    crossfade_seconds: float = Field(default=1.5, ge=0.1, le=4.0)
    last_frame_offset_seconds: float = Field(default=0.1, gt=0, le=1.0)
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")

    # ==========================================================================
    # Object Storage (Cloudflare R2 / S3 compatible)
    # ==========================================================================
    storage_access_key_id: str = Field(default="", description="R2/S3 access key id")
    storage_secret_access_key: str = Field(default="", description="R2/S3 secret key")
    storage_endpoint_url: str = Field(default="", description="R2 endpoint, e.g. https://<account>.r2.cloudflarestorage.com")
    storage_bucket_name: str = Field(default="", description="Bucket name")
    storage_public_url: str = Field(default="", description="Public base URL for uploaded objects")
    storage_region: str = Field(default="auto")

    # ==========================================================================
    # Background Jobs
    # ==========================================================================
    job_worker_concurrency: int = Field(default=2, ge=1, le=8, description="Concurrent generation workers")
    max_pending_jobs: int = Field(default=20, ge=1, le=200, description="Max queued pending jobs")

    # ==========================================================================
    # Security
    # ==========================================================================
    api_key: str = Field(default="", description="Optional API key for /api routes")
    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000"
        ],
        description="Allowed CORS origins"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================
    output_dir: str = Field(default="output", description="Locally hosted final videos")
    temp_dir: str = Field(default="temp", description="Per-session scratch workspaces")
    data_dir: str = Field(default="data", description="Persistent application data directory")

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def analysis_api_key(self) -> str:
        return self.gemini_api_key or self.veo_api_key

    @property
    def database_path(self) -> str:
        return str(Path(self.data_dir) / "clipchain.db")

    @property
    def storage_configured(self) -> bool:
        return bool(
            self.storage_access_key_id
            and self.storage_secret_access_key
            and self.storage_endpoint_url
            and self.storage_bucket_name
        )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
