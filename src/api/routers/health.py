"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps.auth import get_api_key
from ..schemas import HealthResponse
from ..settings import APISettings, get_settings

router = APIRouter(tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def healthz(
    _: str = Depends(get_api_key),
    settings: APISettings = Depends(get_settings),
) -> HealthResponse:
    return HealthResponse(
        ok=True,
        speechace="configured" if settings.speechace_api_key else "missing",
        assemblyai="configured" if settings.assemblyai_api_key else "missing",
    )
