"""HTTP clients for the transcription and scoring proxy."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..audio.types import AudioBlob
from ..store.settings_store import SettingsStore
from .schemas import ScoreResult, TranscriptionResult

LOGGER = logging.getLogger("speechcoach.network")

LANGUAGE_CODES = {"en": "en_us", "es": "es"}


class ApiError(Exception):
    pass


class _ProxyClient:
    def __init__(
        self,
        settings: SettingsStore,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings_store = settings
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        api_key = self.settings_store.get().api_key
        if not api_key:
            return {}
        return {"X-API-Key": api_key}

    def _url(self, path: str) -> str:
        base = self.settings_store.get().server_url.rstrip("/")
        if not base:
            raise ApiError("Server URL missing")
        return f"{base}{path}"

    async def _post(self, path: str, **kwargs) -> Dict[str, Any]:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            resp = await self._client.post(self._url(path), headers=headers, **kwargs)
            if resp.status_code == 401:
                raise ApiError("Unauthorized: check API key")
            resp.raise_for_status()
            try:
                return resp.json()
            except ValueError as exc:
                raise ApiError(f"Invalid response: {exc}") from exc
        except ApiError:
            raise
        except httpx.HTTPStatusError as exc:
            raise ApiError(f"{path} failed: {exc.response.status_code}") from exc
        except Exception as exc:
            raise ApiError(str(exc)) from exc

    async def test_connection(self) -> bool:
        try:
            resp = await self._client.get(self._url("/healthz"), headers=self._headers())
            return resp.status_code == 200
        except Exception as exc:
            raise ApiError(str(exc)) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class TranscriptionClient(_ProxyClient):
    """Upload → submit → poll against the AssemblyAI proxy route."""

    path = "/api/assemblyai"

    def __init__(
        self,
        settings: SettingsStore,
        *,
        timeout: float = 60.0,
        poll_interval: float = 5.0,
        max_polls: int = 60,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(settings, timeout=timeout, client=client)
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    async def transcribe(self, audio: AudioBlob, *, language: str = "en") -> TranscriptionResult:
        upload = await self._post(
            self.path,
            content=audio.data,
            headers={"Content-Type": "application/octet-stream"},
        )
        audio_url = upload.get("upload_url")
        if not audio_url:
            raise ApiError("Upload response missing upload_url")
        LOGGER.debug("Audio uploaded (%d bytes)", audio.size)

        submitted = await self._post(
            self.path,
            json={
                "action": "transcribe",
                "config": {
                    "audio_url": audio_url,
                    "language_code": LANGUAGE_CODES.get(language, language),
                    "punctuate": True,
                    "format_text": True,
                },
            },
        )
        transcript_id = submitted.get("id")
        if not transcript_id:
            raise ApiError("Transcription request was not accepted")

        for attempt in range(self.max_polls):
            result = await self._post(self.path, json={"action": "poll", "transcriptId": transcript_id})
            status = result.get("status")
            if status == "completed":
                return TranscriptionResult(
                    id=str(result.get("id") or transcript_id),
                    text=result.get("text") or "",
                    confidence=float(result.get("confidence") or 0.0),
                    audio_duration=float(result.get("audio_duration") or 0.0),
                    status="completed",
                )
            if status == "error":
                raise ApiError(f"Transcription failed: {result.get('error')}")
            LOGGER.debug("Transcript %s %s (poll %d/%d)", transcript_id, status, attempt + 1, self.max_polls)
            await asyncio.sleep(self.poll_interval)
        raise ApiError("Transcription timed out")


class ScoringClient(_ProxyClient):
    """Posts a segment and its reference text to the SpeechAce proxy route."""

    path = "/api/speechace"

    async def score(
        self,
        audio: AudioBlob,
        reference_text: str,
        *,
        dialect: str = "en-us",
        tag: Optional[str] = None,
        language: Optional[str] = None,
    ) -> ScoreResult:
        data = {"text": reference_text, "dialect": dialect}
        if tag:
            data["question_info"] = tag
        if language:
            data["language"] = language
        files = {"user_audio_file": (f"audio.{audio.extension}", audio.data, audio.mime_type)}
        payload = await self._post(self.path, data=data, files=files)
        if payload.get("status") == "error":
            raise ApiError(f"Scoring failed: {payload.get('detail_message') or payload.get('short_message')}")
        return ScoreResult.model_validate(payload)


__all__ = ["ApiError", "LANGUAGE_CODES", "ScoringClient", "TranscriptionClient"]
