"""Per-request upstream client wiring."""

from __future__ import annotations

from typing import AsyncIterator

import httpx
from fastapi import Depends

from ..services.upstream import UpstreamService
from ..settings import APISettings, get_settings


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


def get_upstream(
    settings: APISettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> UpstreamService:
    return UpstreamService(settings, client)
