"""
Application Settings Configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Database
    database_url: str = Field(default="sqlite:///./data/jobs.db")

    # Redis / RQ
    redis_url: str = Field(default="redis://localhost:6379/0")
    rq_queue_name: str = Field(default="mediaforge-jobs")

    # Worker dispatch: "rq" enqueues on Redis, "http" POSTs to the worker endpoint
    worker_dispatch_mode: Literal["rq", "http"] = Field(default="rq")
    worker_url: str = Field(default="http://localhost:8000/v1/worker")
    internal_worker_token: str = Field(default="1")
    worker_job_timeout_s: int = Field(default=900)

    # Public base URL of this service, used for provider callbacks
    public_base_url: str = Field(default="")

    # Upstream generation provider
    provider_api_key: str = Field(default="")
    provider_video_endpoint: str = Field(default="https://api.aimlapi.com/v1/video-to-video")
    provider_image_endpoint: str = Field(default="https://api.aimlapi.com/v1/images/generations")
    provider_request_timeout_s: float = Field(default=60.0)

    # Webhook shared secret (empty disables the check)
    webhook_secret: str = Field(default="")

    # Poll loop
    poll_interval_s: float = Field(default=3.0)
    poll_timeout_s: float = Field(default=420.0)

    # Recovery sweep for jobs whose worker trigger never arrived
    stale_queued_after_s: int = Field(default=120)

    # Durable storage (S3 compatible)
    storage_bucket: str = Field(default="")
    storage_access_key: str = Field(default="")
    storage_secret_key: str = Field(default="")
    storage_endpoint_url: str = Field(default="")
    storage_region: str = Field(default="")
    storage_public_url: str = Field(default="https://media.mediaforge.local")
    storage_root_folder: str = Field(default="mediaforge")

    # Scratch space for story stills
    scratch_root: str = Field(default="")

    # FFmpeg
    ffmpeg_path: str = Field(default="ffmpeg")

    # Auth
    jwt_secret: str = Field(default="mediaforge-dev-secret-change-in-production")
    jwt_algorithm: str = Field(default="HS256")

    # Presets
    presets_dir: str = ""

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.presets_dir:
            self.presets_dir = os.path.join(
                os.path.dirname(os.path.dirname(__file__)),
                "templates",
                "presets",
            )

    @property
    def callback_url(self) -> str:
        """Webhook URL handed to the provider, empty when no public base is known"""
        if not self.public_base_url:
            return ""
        return f"{self.public_base_url.rstrip('/')}/v1/webhooks/provider"


# Global settings instance
settings = Settings()
