"""Optional X-API-Key guard for proxy routes."""

from __future__ import annotations

import secrets

from fastapi import Depends, Header, HTTPException, status

from ..settings import APISettings, get_settings


async def get_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    settings: APISettings = Depends(get_settings),
) -> str:
    """Accept any caller when no keys are configured."""
    if not settings.api_keys:
        return ""
    if x_api_key and any(secrets.compare_digest(x_api_key, key) for key in settings.api_keys):
        return x_api_key
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")
