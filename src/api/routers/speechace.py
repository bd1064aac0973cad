"""Pronunciation scoring proxy."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from ..deps.auth import get_api_key
from ..deps.upstream import get_upstream
from ..services.upstream import MissingKeyError, UpstreamError, UpstreamService, resolve_dialect
from .errors import missing_key_response, upstream_error_response

LOGGER = logging.getLogger("speechcoach.api")

router = APIRouter(prefix="/api", tags=["speechace"])

DROPPED_FIELDS = {"key", "dialect", "language"}


@router.post("/speechace")
async def score_pronunciation(
    request: Request,
    _: str = Depends(get_api_key),
    upstream: UpstreamService = Depends(get_upstream),
):
    form = await request.form()
    fields: dict[str, list[str]] = {}
    files = []
    for name, value in form.multi_items():
        if name in DROPPED_FIELDS:
            continue
        if isinstance(value, UploadFile):
            content = await value.read()
            files.append((name, (value.filename or "audio", content, value.content_type or "application/octet-stream")))
        else:
            fields.setdefault(name, []).append(str(value))
    dialect_value = form.get("dialect")
    language_value = form.get("language")
    dialect = resolve_dialect(
        dialect_value if isinstance(dialect_value, str) else None,
        language_value if isinstance(language_value, str) else None,
    )
    try:
        return await upstream.score(fields, files, dialect)
    except MissingKeyError as exc:
        return missing_key_response(exc)
    except UpstreamError as exc:
        return upstream_error_response(exc)
