"""Pydantic schemas for proxy contracts."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class AssemblyAIRequest(BaseModel):
    action: Literal["transcribe", "poll"]
    config: Dict[str, Any] = Field(default_factory=dict)
    transcriptId: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    details: Any | None = None
    status: Optional[int] = None


class HealthResponse(BaseModel):
    ok: bool
    speechace: str
    assemblyai: str
