"""Proxy settings resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


class APISettings(BaseModel):
    app_name: str = Field(default="SpeechCoach Proxy")
    version: str = Field(default="0.1.0")
    api_keys: List[str] = Field(default_factory=lambda: _split_keys())
    speechace_api_key: str | None = Field(default=os.getenv("SPEECHACE_API_KEY"))
    speechace_api_url: str = Field(
        default=os.getenv("SPEECHACE_API_URL", "https://api.speechace.co/api/scoring/text/v9/json")
    )
    assemblyai_api_key: str | None = Field(default=os.getenv("ASSEMBLYAI_API_KEY"))
    assemblyai_base_url: str = Field(
        default=os.getenv("ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com/v2")
    )
    upstream_timeout_sec: float = Field(default=float(os.getenv("UPSTREAM_TIMEOUT_SEC", "30")))
    upload_timeout_sec: float = Field(default=float(os.getenv("UPLOAD_TIMEOUT_SEC", "60")))


def _split_keys() -> List[str]:
    raw = os.getenv("API_KEYS") or os.getenv("API_KEY") or ""
    return [key.strip() for key in raw.split(",") if key.strip()]


@lru_cache()
def get_settings() -> APISettings:
    return APISettings()
