"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # Preprocessing
    default_mode: Literal["simple", "imagenet", "mobilenet_v2", "range_neg1_1", "none", "caffe"] = "mobilenet_v2"
    default_input_size: int = Field(default=224, ge=1)
    debug: bool = False

    # Runtime threading (0 = let the runtime decide)
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=0, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=1, ge=1)
    queue_timeout: float = Field(default=30.0, gt=0)

    # Input limits
    max_archive_size: int = Field(default=268_435_456, ge=1)
    max_image_file_size: int = Field(default=10_485_760, ge=1)
    max_image_pixels: int = Field(default=16_777_216, ge=1)

    # Results
    top_k: int = Field(default=5, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
