"""API settings resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


class APISettings(BaseModel):
    app_name: str = Field(default="LiveScribe Backend")
    version: str = Field(default="1.0.0")
    host: str = Field(default=os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default=int(os.getenv("PORT", "3847")))
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))
    cors_origins: List[str] = Field(default_factory=lambda: _split_origins())
    max_upload_bytes: int = Field(
        default=int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))
    )
    whisper_model: str = Field(default=os.getenv("WHISPER_MODEL", "small"))
    whisper_device: str = Field(default=os.getenv("WHISPER_DEVICE", "cpu"))
    whisper_compute_type: str = Field(
        default=os.getenv("WHISPER_COMPUTE_TYPE", "int8")
    )
    whisper_language: str | None = Field(default=os.getenv("WHISPER_LANGUAGE") or None)
    whisper_mock_transcriber: bool = Field(
        default=os.getenv("WHISPER_USE_MOCK", "false").lower() in {"1", "true", "yes"}
    )
    whisper_preload: bool = Field(
        default=os.getenv("WHISPER_PRELOAD", "true").lower() in {"1", "true", "yes"}
    )
    live_silence_ms: int = Field(default=int(os.getenv("LIVE_SILENCE_MS", "500")))
    live_latency_ceiling_ms: int = Field(
        default=int(os.getenv("LIVE_LATENCY_CEILING_MS", "3000"))
    )
    live_input_format: str = Field(default=os.getenv("LIVE_INPUT_FORMAT", "webm"))
    live_sample_rate: int = Field(default=int(os.getenv("LIVE_SAMPLE_RATE", "16000")))


def _split_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS") or "app://obsidian.md,capacitor://localhost,http://localhost"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> APISettings:
    return APISettings()
