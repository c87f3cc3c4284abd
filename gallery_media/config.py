from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Gallery Media Derivation"
    debug: bool = False
    log_level: str = "INFO"

    cdn_domain: str = "https://images.vfa.gallery"

    storage_backend: Literal["local", "s3"] = "local"
    storage_dir: str = "tmp/objects"
    s3_bucket: str = ""
    s3_endpoint_url: str | None = None
    s3_region: str = "auto"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    transform_mode: Literal["local", "http", "detached"] = "local"
    transform_endpoint: str = "http://localhost:8000"
    transform_api_token: str | None = None
    unit_timeout_seconds: float = Field(default=30.0, gt=0)
    join_timeout_seconds: float = Field(default=60.0, gt=0)

    readiness_ttl_seconds: float = Field(default=3600.0, gt=0)
    readiness_max_attempts: int = Field(default=20, ge=1)
    readiness_interval_ms: int = Field(default=500, ge=0)

    thumbnail_width: int = Field(default=400, ge=1, le=16000)
    thumbnail_height: int = Field(default=400, ge=1, le=16000)
    thumbnail_quality: int = Field(default=80, ge=1, le=100)
    icon_size: int = Field(default=128, ge=1, le=16000)
    icon_quality: int = Field(default=80, ge=1, le=100)
    display_max_size: int = Field(default=1200, ge=1, le=16000)
    display_quality: int = Field(default=85, ge=1, le=100)
    watermark_font_path: str = "DejaVuSans.ttf"

    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    @property
    def storage_path(self) -> Path:
        path = Path(self.storage_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()
