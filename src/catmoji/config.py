"""Environment-based configuration for Catmoji."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CATMOJI_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CATMOJI_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection. model_path overrides the registry download.
    classifier_model: str = "cat_emotion_v1"
    model_path: str | None = None
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Seconds a request may wait for the inference worker
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input conversion
    crop_mode: Literal["center_crop", "scale_fit", "scale_fill"] = "center_crop"

    # Presentation
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    top_k: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
