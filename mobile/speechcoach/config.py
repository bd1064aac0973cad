"""Per-session configuration for the practice recorder."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SUPPORTED_LANGUAGES = ("en", "es")
SUPPORTED_DIALECTS = ("en-us", "en-gb", "es-es", "es-mx", "fr-fr")
AUDIO_FORMATS = ("flac", "wav", "raw")


class GroundTruthMode(str, Enum):
    FIXED = "fixed"
    TRANSCRIBED = "transcription"


class SessionConfig(BaseModel):
    """Immutable settings for one recording session.

    Tuning values and downstream identifiers are passed in explicitly; the
    session never reads them from the environment.
    """

    model_config = ConfigDict(frozen=True)

    ground_truth_mode: GroundTruthMode = GroundTruthMode.FIXED
    fixed_ground_truth: Optional[str] = None
    silence_threshold: float = Field(default=0.01, gt=0.0, le=1.0)
    silence_delay_ms: int = Field(default=1000, ge=0)
    max_segment_duration_ms: int = Field(default=12000, gt=0)
    max_total_duration_ms: int = Field(default=60000, gt=0)
    language: str = "en"
    dialect: str = "en-us"
    user_id: Optional[str] = None

    sample_rate: int = Field(default=16000, gt=0)
    channels: int = Field(default=1, ge=1)
    block_ms: int = Field(default=100, gt=0)
    window_size: int = Field(default=256, gt=0)
    frame_interval_ms: int = Field(default=16, gt=0)
    restart_delay_ms: int = Field(default=100, ge=0)
    audio_format: str = "flac"
    downstream_timeout_ms: Optional[int] = Field(default=None, gt=0)

    on_segment_processed: Optional[Callable[[Any], None]] = None
    on_complete: Optional[Callable[[List[Any]], None]] = None

    @field_validator("language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language {value!r}")
        return value

    @field_validator("dialect")
    @classmethod
    def _check_dialect(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_DIALECTS:
            raise ValueError(f"unsupported dialect {value!r}")
        return value

    @field_validator("audio_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        value = value.lower()
        if value not in AUDIO_FORMATS:
            raise ValueError(f"unsupported audio format {value!r}")
        return value

    @model_validator(mode="after")
    def _check_ground_truth(self) -> "SessionConfig":
        phrase = (self.fixed_ground_truth or "").strip()
        if self.ground_truth_mode is GroundTruthMode.FIXED and not phrase:
            raise ValueError("fixed_ground_truth is required in fixed mode")
        return self

    @property
    def max_segment_duration(self) -> float:
        return self.max_segment_duration_ms / 1000.0

    @property
    def max_total_duration(self) -> float:
        return self.max_total_duration_ms / 1000.0

    @property
    def downstream_timeout(self) -> float | None:
        if self.downstream_timeout_ms is None:
            return None
        return self.downstream_timeout_ms / 1000.0


__all__ = ["AUDIO_FORMATS", "GroundTruthMode", "SessionConfig", "SUPPORTED_DIALECTS", "SUPPORTED_LANGUAGES"]
