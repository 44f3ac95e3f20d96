"""
WasteWatch - Configuration Management
Centralized configuration using pydantic-settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Waste detector (Ultralytics HUB inference API)
    detector_api_key: Optional[str] = None
    detector_url: str = "https://predict.ultralytics.com"
    detector_model_url: str = "https://hub.ultralytics.com/models/ZVb5acmIVTVJsvn2CfpO"
    classification_timeout_seconds: float = 30.0

    # Cache Settings
    verdict_cache_ttl_seconds: float = 300.0

    # Cloudinary (image storage)
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    upload_timeout_seconds: float = 15.0
    upload_folder: str = "reports"
    upload_format: str = "jpg"
    upload_max_width: int = 800

    # Database
    database_url: Optional[str] = None

    # Submission limits
    max_image_bytes: int = 5 * 1024 * 1024

    # Deadline races: detector calls and uploads run on separate pools
    classification_workers: int = 40
    upload_workers: int = 40

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
