"""Configuration for target capture and shot detection."""
from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from target_capture.core.models import AudioDetectionConfig


class AppSettings(BaseSettings):
    """Application configuration sourced from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="RANGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    detection_enabled: bool = Field(default=True, description="Allow microphone shot detection.")
    sensitivity: int = Field(default=50, ge=0, le=100)
    min_delay_ms: int = Field(default=500, ge=0)
    baseline_sample_count: int = Field(default=30, ge=1)
    baseline_decay: float = Field(default=0.99, ge=0.0, le=1.0)
    tick_interval_seconds: float = Field(default=1.0 / 60.0, ge=0.0)
    volume_poll_interval_seconds: float = Field(default=0.1, gt=0.0)
    sample_rate: int = Field(default=44100, gt=0)
    frames_per_buffer: int = Field(default=512, gt=0)
    input_device_index: Optional[int] = None
    presets_path: Path = Field(
        default=Path(__file__).resolve().parent / "target_presets.yaml",
        description="YAML catalogue of calibration presets.",
    )
    log_format: Literal["text", "json"] = "text"
    log_level: str = "INFO"

    @field_validator("presets_path", mode="before")
    @classmethod
    def _expand_path(cls, value: str | Path) -> Path:
        return Path(value).expanduser()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def detection_config(self) -> AudioDetectionConfig:
        return AudioDetectionConfig(sensitivity=self.sensitivity, min_delay_ms=self.min_delay_ms)


def load_settings(**overrides: object) -> AppSettings:
    """Return application settings, applying optional overrides."""

    return AppSettings(**overrides)


def get_settings() -> AppSettings:
    return AppSettings()
