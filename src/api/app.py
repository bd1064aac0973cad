"""FastAPI application factory for the speech-service proxy."""

from __future__ import annotations

from fastapi import FastAPI

from .metrics import instrument_app, router as metrics_router
from .routers import assemblyai, health, speechace
from .settings import get_settings


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version=settings.version)
    app.include_router(health.router)
    app.include_router(speechace.router)
    app.include_router(assemblyai.router)
    app.include_router(metrics_router)
    return instrument_app(app)
