"""Transcription proxy: audio upload, transcript submission and polling."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from ..deps.auth import get_api_key
from ..deps.upstream import get_upstream
from ..schemas import AssemblyAIRequest
from ..services.upstream import MissingKeyError, UpstreamError, UpstreamService
from .errors import bad_request, missing_key_response, upstream_error_response

LOGGER = logging.getLogger("speechcoach.api")

router = APIRouter(prefix="/api", tags=["assemblyai"])


@router.post("/assemblyai")
async def assemblyai_proxy(
    request: Request,
    _: str = Depends(get_api_key),
    upstream: UpstreamService = Depends(get_upstream),
):
    content_type = request.headers.get("content-type", "")
    try:
        if "application/octet-stream" in content_type:
            body = await request.body()
            LOGGER.info("Proxying AssemblyAI upload (%d bytes)", len(body))
            return await upstream.upload(body)

        raw = (await request.body()).decode("utf-8", errors="replace")
        if not raw.strip():
            return bad_request("Request body is empty")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            return bad_request("Invalid JSON in request body", str(exc))
        if not isinstance(payload, dict) or not payload.get("action"):
            return bad_request("Missing action field")
        try:
            parsed = AssemblyAIRequest.model_validate(payload)
        except ValidationError:
            return bad_request("Invalid action")

        LOGGER.info("Proxying AssemblyAI %s request", parsed.action)
        if parsed.action == "transcribe":
            return await upstream.transcribe(parsed.config)
        if not parsed.transcriptId:
            return bad_request("Missing transcriptId")
        return await upstream.poll(parsed.transcriptId)
    except MissingKeyError as exc:
        return missing_key_response(exc)
    except UpstreamError as exc:
        return upstream_error_response(exc)
