"""Pytest configuration helpers."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import pytest


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()

from mobile.speechcoach.audio.microphone import MicrophoneError  # noqa: E402
from mobile.speechcoach.services.network import ApiError  # noqa: E402
from mobile.speechcoach.services.schemas import ScoreResult, TranscriptionResult  # noqa: E402


def level_to_int16(level: float) -> int:
    return int(max(0.0, min(level, 1.0)) * 32767)


class ManualStream:
    """In-memory stream; tests push chunks and set the sampled window by hand."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1, window_size: int = 256) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.window = np.zeros(window_size, dtype=np.int16)
        self.listeners: list = []
        self.closed = False
        self.close_calls = 0

    @property
    def active(self) -> bool:
        return not self.closed

    def read_window(self) -> np.ndarray:
        return self.window.copy()

    def set_level(self, level: float) -> None:
        self.window = np.full(self.window.size, level_to_int16(level), dtype=np.int16)

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def push(self, chunk: bytes) -> None:
        for listener in list(self.listeners):
            listener(chunk)

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self.listeners.clear()


class ScriptedStream(ManualStream):
    """Stream whose amplitude follows ``level_at(seconds_since_first_open)``.

    A background task emits a chunk every ``chunk_ms`` at the current level.
    """

    def __init__(self, level_at: Callable[[], float], *, chunk_ms: int = 20, sample_rate: int = 16000) -> None:
        super().__init__(sample_rate=sample_rate)
        self.level_at = level_at
        self.chunk_samples = int(sample_rate * chunk_ms / 1000)
        self.chunk_interval = chunk_ms / 1000.0
        self._pump = asyncio.get_running_loop().create_task(self._run())

    def read_window(self) -> np.ndarray:
        return np.full(self.window.size, level_to_int16(self.level_at()), dtype=np.int16)

    async def _run(self) -> None:
        while not self.closed:
            value = level_to_int16(self.level_at())
            self.push(np.full(self.chunk_samples, value, dtype=np.int16).tobytes())
            await asyncio.sleep(self.chunk_interval)

    def close(self) -> None:
        super().close()
        self._pump.cancel()


class ScriptedMicrophone:
    """Stream factory shared by every segment of one session.

    ``script`` maps seconds since the first acquisition to a level in 0..1.
    ``fail_from`` makes the n-th acquisition (0-based) and later ones fail.
    """

    def __init__(self, script: Callable[[float], float], *, fail_from: Optional[int] = None) -> None:
        self.script = script
        self.fail_from = fail_from
        self.opened: list[ScriptedStream] = []
        self.open_times: list[float] = []
        self.t0: Optional[float] = None

    def elapsed(self) -> float:
        loop = asyncio.get_running_loop()
        return loop.time() - (self.t0 if self.t0 is not None else loop.time())

    async def __call__(self) -> ScriptedStream:
        loop = asyncio.get_running_loop()
        if self.t0 is None:
            self.t0 = loop.time()
        if self.fail_from is not None and len(self.opened) >= self.fail_from:
            raise MicrophoneError("Permission denied")
        await asyncio.sleep(0)
        stream = ScriptedStream(lambda: self.script(self.elapsed()))
        self.opened.append(stream)
        self.open_times.append(self.elapsed())
        return stream

    @property
    def live_streams(self) -> int:
        return sum(1 for stream in self.opened if stream.active)


def score_payload(pronunciation: float = 82.0) -> dict:
    return {
        "status": "success",
        "speechace_score": {"pronunciation": pronunciation, "cefr_level": "B2"},
        "word_score_list": [
            {
                "word": "quick",
                "quality_score": 90,
                "phone_score_list": [{"phone": "k", "quality_score": 95}, {"phone": "w", "quality_score": 60}],
            },
            {"word": "fox", "quality_score": 55, "phone_score_list": [{"phone": "f", "quality_score": 80}]},
        ],
    }


class StubScorer:
    def __init__(self, *, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail
        self.calls: list[dict] = []
        self.pending = 0

    async def score(self, audio, reference_text, *, dialect="en-us", tag=None, language=None) -> ScoreResult:
        self.calls.append({"audio": audio, "text": reference_text, "dialect": dialect, "tag": tag})
        self.pending += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise ApiError("Scoring failed: 500")
            return ScoreResult.model_validate(score_payload())
        finally:
            self.pending -= 1


class StubTranscriber:
    def __init__(self, text: str = "hello world", *, delay: float = 0.0, fail: bool = False) -> None:
        self.text = text
        self.delay = delay
        self.fail = fail
        self.calls: list[dict] = []

    async def transcribe(self, audio, *, language="en") -> TranscriptionResult:
        self.calls.append({"audio": audio, "language": language})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ApiError("Transcription failed: boom")
        return TranscriptionResult(id="t1", text=self.text, confidence=0.93, audio_duration=1.2)


@pytest.fixture()
def manual_stream() -> ManualStream:
    return ManualStream()


@pytest.fixture()
def scripted_microphone():
    return ScriptedMicrophone


@pytest.fixture()
def stub_scorer():
    return StubScorer


@pytest.fixture()
def stub_transcriber():
    return StubTranscriber
