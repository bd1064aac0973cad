"""Shared JSON error responses for proxy routes."""

from __future__ import annotations

from fastapi.responses import JSONResponse

from ..schemas import ErrorResponse
from ..services.upstream import MissingKeyError, UpstreamError


def missing_key_response(exc: MissingKeyError) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=str(exc)).model_dump(exclude_none=True), status_code=500)


def upstream_error_response(exc: UpstreamError) -> JSONResponse:
    body = ErrorResponse(
        error=f"{exc.service} API error",
        message=exc.message,
        details=exc.details,
        status=exc.status,
    )
    return JSONResponse(body.model_dump(exclude_none=True), status_code=exc.status)


def bad_request(message: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, details=details)
    return JSONResponse(body.model_dump(exclude_none=True), status_code=400)
