"""Amplitude-threshold voice activity detection with a silence debounce."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

import numpy as np

from .microphone import AudioStream
from .types import VadEvent

LOGGER = logging.getLogger("speechcoach.vad")

INT16_HALF_RANGE = 32768.0


def normalized_amplitude(window: np.ndarray, *, center: float = 0.0, half_range: float = INT16_HALF_RANGE) -> float:
    """Peak deviation from ``center`` scaled to 0..1."""
    if window.size == 0:
        return 0.0
    peak = float(np.max(np.abs(window.astype(np.float64) - center)))
    return max(0.0, min(1.0, peak / half_range))


class SilenceClassifier:
    """Two-state debounced threshold detector.

    ``update`` is fed one amplitude per tick and returns the events that tick
    produced. Sustained silence fires once per contiguous quiet stretch of at
    least ``delay_ms``.
    """

    def __init__(self, threshold: float, delay_ms: int) -> None:
        self.threshold = threshold
        self.delay = delay_ms / 1000.0
        self.is_speaking = False
        self.silence_start: Optional[float] = None

    def update(self, amplitude: float, now: float) -> list[VadEvent]:
        events: list[VadEvent] = []
        if amplitude < self.threshold:
            if self.is_speaking:
                self.is_speaking = False
                events.append(VadEvent.SPEECH_STOPPED)
            if self.silence_start is None:
                self.silence_start = now
            if now - self.silence_start >= self.delay:
                self.silence_start = None
                events.append(VadEvent.SILENCE_DETECTED)
        else:
            if not self.is_speaking:
                self.is_speaking = True
                events.append(VadEvent.SPEECH_STARTED)
            self.silence_start = None
        return events

    def reset(self) -> None:
        self.is_speaking = False
        self.silence_start = None


class VoiceActivityDetector:
    """Samples a live stream every frame and reports speech boundaries."""

    def __init__(
        self,
        *,
        threshold: float,
        delay_ms: int,
        on_silence: Callable[[], None],
        on_speech_started: Callable[[], None] | None = None,
        on_speech_stopped: Callable[[], None] | None = None,
        frame_interval_ms: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.classifier = SilenceClassifier(threshold, delay_ms)
        self.on_silence = on_silence
        self.on_speech_started = on_speech_started
        self.on_speech_stopped = on_speech_stopped
        self.frame_interval = frame_interval_ms / 1000.0
        self._clock = clock
        self._stream: AudioStream | None = None
        self._task: asyncio.Task | None = None
        self._detecting = False

    @property
    def detecting(self) -> bool:
        return self._detecting

    def start(self, stream: AudioStream) -> None:
        if not stream.active:
            raise RuntimeError("Cannot sample a released stream")
        loop = asyncio.get_running_loop()
        self._stream = stream
        self.classifier.reset()
        self._detecting = True
        self._task = loop.create_task(self._run())
        LOGGER.debug("Detector started")

    def stop(self) -> None:
        self._detecting = False
        self.classifier.silence_start = None
        if self._task and not self._task.done() and self._task is not _current_task():
            self._task.cancel()
        self._task = None
        self._stream = None
        LOGGER.debug("Detector stopped")

    def get_current_volume(self) -> float:
        if self._stream is None or not self._stream.active:
            return 0.0
        return normalized_amplitude(self._stream.read_window())

    async def _run(self) -> None:
        while self._detecting:
            self.tick()
            if not self._detecting:
                break
            await asyncio.sleep(self.frame_interval)

    def tick(self) -> list[VadEvent]:
        """Sample the current window once and dispatch resulting events."""
        if not self._detecting or self._stream is None:
            return []
        amplitude = normalized_amplitude(self._stream.read_window())
        events = self.classifier.update(amplitude, self._clock())
        for event in events:
            if event is VadEvent.SILENCE_DETECTED:
                # Sampling halts once sustained silence has been reported.
                self._detecting = False
                LOGGER.debug("Sustained silence detected")
                self.on_silence()
            elif event is VadEvent.SPEECH_STARTED:
                if self.on_speech_started:
                    self.on_speech_started()
            elif event is VadEvent.SPEECH_STOPPED:
                if self.on_speech_stopped:
                    self.on_speech_stopped()
        return events


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


__all__ = ["INT16_HALF_RANGE", "SilenceClassifier", "VoiceActivityDetector", "normalized_amplitude"]
