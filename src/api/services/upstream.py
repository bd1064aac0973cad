"""Forwarding helpers for the third-party speech services."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..metrics import UPSTREAM_COUNTER, UPSTREAM_LATENCY
from ..settings import APISettings

LOGGER = logging.getLogger("speechcoach.api")

SUPPORTED_DIALECTS = {"en-us", "en-gb", "es-es", "es-mx", "fr-fr"}
SPANISH_ALIASES = {"es", "spanish", "es-mx"}

FileField = Tuple[str, Tuple[str, bytes, str]]


class MissingKeyError(Exception):
    def __init__(self, service: str) -> None:
        super().__init__(f"{service} API key not configured")
        self.service = service


class UpstreamError(Exception):
    def __init__(self, service: str, status: int, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.service = service
        self.status = status
        self.message = message
        self.details = details


def resolve_dialect(dialect: Optional[str], language: Optional[str]) -> str:
    """Client dialect when supported, else derived from the language field."""
    if dialect and dialect.lower() in SUPPORTED_DIALECTS:
        return dialect.lower()
    if language and language.lower() in SPANISH_ALIASES:
        return "es-mx"
    return "en-us"


class UpstreamService:
    def __init__(self, settings: APISettings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.client = client

    async def score(self, fields: Dict[str, List[str]], files: List[FileField], dialect: str) -> Dict[str, Any]:
        key = self._require(self.settings.speechace_api_key, "SpeechAce")
        return await self._call(
            "SpeechAce",
            "POST",
            self.settings.speechace_api_url,
            params={"key": key, "dialect": dialect},
            data=fields,
            files=files or None,
            timeout=self.settings.upstream_timeout_sec,
        )

    async def upload(self, body: bytes) -> Dict[str, Any]:
        key = self._require(self.settings.assemblyai_api_key, "AssemblyAI")
        return await self._call(
            "AssemblyAI",
            "POST",
            f"{self._assemblyai_base()}/upload",
            content=body,
            headers={"authorization": key, "content-type": "application/octet-stream"},
            timeout=self.settings.upload_timeout_sec,
        )

    async def transcribe(self, config: Dict[str, Any]) -> Dict[str, Any]:
        key = self._require(self.settings.assemblyai_api_key, "AssemblyAI")
        return await self._call(
            "AssemblyAI",
            "POST",
            f"{self._assemblyai_base()}/transcript",
            json=config,
            headers={"authorization": key},
            timeout=self.settings.upstream_timeout_sec,
        )

    async def poll(self, transcript_id: str) -> Dict[str, Any]:
        key = self._require(self.settings.assemblyai_api_key, "AssemblyAI")
        return await self._call(
            "AssemblyAI",
            "GET",
            f"{self._assemblyai_base()}/transcript/{transcript_id}",
            headers={"authorization": key},
            timeout=self.settings.upstream_timeout_sec,
        )

    def _assemblyai_base(self) -> str:
        return self.settings.assemblyai_base_url.rstrip("/")

    @staticmethod
    def _require(key: Optional[str], service: str) -> str:
        if not key:
            LOGGER.error("%s API key not found in environment", service)
            raise MissingKeyError(service)
        return key

    async def _call(self, service: str, method: str, url: str, **kwargs) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            resp = await self.client.request(method, url, **kwargs)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            UPSTREAM_COUNTER.labels(service=service, outcome="http_error").inc()
            details = _safe_json(exc.response)
            message = _extract_message(details) or str(exc)
            LOGGER.warning("%s returned %s: %s", service, exc.response.status_code, message)
            raise UpstreamError(service, exc.response.status_code, message, details) from exc
        except httpx.HTTPError as exc:
            UPSTREAM_COUNTER.labels(service=service, outcome="transport_error").inc()
            LOGGER.warning("%s unreachable: %s", service, exc)
            raise UpstreamError(service, 502, str(exc)) from exc
        except ValueError as exc:
            UPSTREAM_COUNTER.labels(service=service, outcome="invalid_json").inc()
            raise UpstreamError(service, 502, f"Invalid response: {exc}") from exc
        finally:
            UPSTREAM_LATENCY.labels(service=service).observe(time.perf_counter() - start)
        UPSTREAM_COUNTER.labels(service=service, outcome="ok").inc()
        return payload


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _extract_message(details: Any) -> Optional[str]:
    if isinstance(details, dict):
        for key in ("message", "error", "detail_message"):
            if details.get(key):
                return str(details[key])
    return None
