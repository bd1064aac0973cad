"""Recording session orchestration.

One ``AudioSession`` owns a full practice turn:

    microphone → detector + recorder → segment cut → scoring → results

A segment ends on sustained silence, when the per-segment ceiling fires, when
the session ceiling fires, or on ``stop_recording``. Silence and the
per-segment ceiling roll straight into a new segment on a freshly acquired
stream; the other two finish the session. Finalized blobs are scored
concurrently and their results flow through a single queue that is the only
writer of the segment list, so the list is in completion order.

States:
    IDLE → RECORDING → ENDING_SEGMENT → (RECORDING | FINISHED)

``on_complete`` fires once the session is FINISHED and every finalized
segment has been scored or discarded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Awaitable, Callable, List, Optional

from ..config import SessionConfig
from ..services.scoring import PronunciationScorer, ScoringPipeline, Transcriber
from .microphone import AudioStream, open_microphone
from .recorder import SegmentRecorder, combine_blobs
from .types import AudioBlob, EndReason, Segment, SessionState
from .vad import VoiceActivityDetector

LOGGER = logging.getLogger("speechcoach.session")

StreamFactory = Callable[[], Awaitable[AudioStream]]

_CLOSE = object()


class SessionError(RuntimeError):
    pass


@dataclass(eq=False)
class _ActiveSegment:
    sequence: int
    started_at: float
    stream: AudioStream
    recorder: Optional[SegmentRecorder] = None
    vad: Optional[VoiceActivityDetector] = None
    has_speech: bool = False
    speaking: bool = False
    end_reason: Optional[EndReason] = None


class AudioSession:
    def __init__(
        self,
        config: SessionConfig,
        *,
        scorer: PronunciationScorer,
        transcriber: Transcriber | None = None,
        stream_factory: StreamFactory | None = None,
    ) -> None:
        self.config = config
        try:
            self.pipeline = ScoringPipeline(config, scorer=scorer, transcriber=transcriber)
        except ValueError as exc:
            raise SessionError(str(exc)) from exc
        self._stream_factory = stream_factory or partial(
            open_microphone,
            sample_rate=config.sample_rate,
            channels=config.channels,
            block_ms=config.block_ms,
            window_size=config.window_size,
        )
        self.state = SessionState.IDLE
        self.started_at: Optional[datetime] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._t0 = 0.0
        self._active: Optional[_ActiveSegment] = None
        self._segments: List[Segment] = []
        self._sequence = 0
        self._pending = 0
        self._stop_requested = False
        self._completed = False
        self._segment_timer: Optional[asyncio.TimerHandle] = None
        self._session_timer: Optional[asyncio.TimerHandle] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._results: Optional[asyncio.Queue] = None
        self._done: Optional[asyncio.Future] = None

    # -- caller API -------------------------------------------------------

    async def start_recording(self) -> None:
        """Acquire the microphone and begin the first segment.

        Acquisition errors propagate; no session is created in that case.
        """
        if self.state is not SessionState.IDLE or self._loop is not None:
            raise SessionError("Session already started")
        loop = asyncio.get_running_loop()
        stream = await self._stream_factory()
        self._loop = loop
        self._t0 = loop.time()
        self.started_at = datetime.now(timezone.utc)
        try:
            self._begin_segment(stream, min(self.config.max_segment_duration, self.config.max_total_duration))
        except Exception:
            stream.close()
            self._loop = None
            raise
        self._results = asyncio.Queue()
        self._done = loop.create_future()
        self._spawn(self._collect())
        self._session_timer = loop.call_later(self.config.max_total_duration, self._on_session_timeout)
        LOGGER.info(
            "Session started (%s mode, segment ≤ %d ms, total ≤ %d ms)",
            self.config.ground_truth_mode.value,
            self.config.max_segment_duration_ms,
            self.config.max_total_duration_ms,
        )

    def stop_recording(self) -> None:
        """Stop capturing; the in-flight segment is still finalized and scored."""
        if self.state in (SessionState.IDLE, SessionState.FINISHED):
            return
        self._stop_requested = True
        LOGGER.info("Stop requested")
        if self.state is SessionState.RECORDING:
            self._end_segment(EndReason.STOPPED)
        else:
            self._finish()

    async def wait_complete(self) -> List[Segment]:
        """Wait until ``on_complete`` has fired and return the segments."""
        if self._done is None:
            raise SessionError("Session was never started")
        return await asyncio.shield(self._done)

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def elapsed_ms(self) -> int:
        if self._loop is None:
            return 0
        return int((self._loop.time() - self._t0) * 1000)

    def get_segments(self, *, chronological: bool = False) -> List[Segment]:
        if chronological:
            return sorted(self._segments, key=lambda segment: segment.sequence)
        return list(self._segments)

    def combined_transcription(self) -> str:
        return " ".join(
            segment.validated_transcription.strip()
            for segment in self._segments
            if segment.validated_transcription.strip()
        )

    def combined_audio(self) -> Optional[AudioBlob]:
        return combine_blobs(
            (segment.audio for segment in self.get_segments(chronological=True)),
            self.config.audio_format,
        )

    def current_volume(self) -> float:
        if self._active is None or self._active.vad is None:
            return 0.0
        return self._active.vad.get_current_volume()

    def is_speaking(self) -> bool:
        """True while the active segment's detector hears sound above the threshold."""
        return self._active is not None and self._active.speaking

    # -- state machine ----------------------------------------------------

    def _begin_segment(self, stream: AudioStream, ceiling: float) -> None:
        assert self._loop is not None
        self._sequence += 1
        active = _ActiveSegment(sequence=self._sequence, started_at=self._loop.time(), stream=stream)
        active.recorder = SegmentRecorder(
            stream,
            partial(self._on_segment_finalized, active),
            audio_format=self.config.audio_format,
        )
        active.vad = VoiceActivityDetector(
            threshold=self.config.silence_threshold,
            delay_ms=self.config.silence_delay_ms,
            on_silence=partial(self._on_silence, active),
            on_speech_started=partial(self._on_speech_started, active),
            on_speech_stopped=partial(self._on_speech_stopped, active),
            frame_interval_ms=self.config.frame_interval_ms,
            clock=self._loop.time,
        )
        active.vad.start(stream)
        try:
            active.recorder.start()
        except Exception:
            active.vad.stop()
            raise
        self._active = active
        self.state = SessionState.RECORDING
        self._segment_timer = self._loop.call_later(ceiling, self._on_segment_timeout, active)
        LOGGER.debug("Segment %d recording (ceiling %.0f ms)", active.sequence, ceiling * 1000)

    def _end_segment(self, reason: EndReason) -> None:
        active = self._active
        if self.state is not SessionState.RECORDING or active is None:
            return
        self.state = SessionState.ENDING_SEGMENT
        self._active = None
        active.end_reason = reason
        self._cancel_segment_timer()
        assert active.vad is not None and active.recorder is not None
        active.vad.stop()
        self._pending += 1
        if active.recorder.stop() is None:
            self._pending -= 1
        LOGGER.debug("Segment %d ending (%s)", active.sequence, reason.value)

        if reason.continues_session and not self._stop_requested and self._remaining() > 0:
            assert self._loop is not None
            self._restart_handle = self._loop.call_later(
                self.config.restart_delay_ms / 1000.0, self._spawn_next_segment
            )
        else:
            self._finish()

    def _spawn_next_segment(self) -> None:
        self._restart_handle = None
        self._spawn(self._start_next_segment())

    async def _start_next_segment(self) -> None:
        if self.state is not SessionState.ENDING_SEGMENT or self._stop_requested:
            return
        if self._remaining() <= 0:
            self._finish()
            return
        try:
            stream = await self._stream_factory()
        except Exception as exc:
            LOGGER.warning("Could not reopen microphone; ending session: %s", exc)
            self._finish()
            return
        if self.state is not SessionState.ENDING_SEGMENT or self._stop_requested:
            stream.close()
            return
        remaining = self._remaining()
        if remaining <= 0:
            stream.close()
            self._finish()
            return
        try:
            self._begin_segment(stream, min(self.config.max_segment_duration, remaining))
        except Exception as exc:
            LOGGER.warning("Could not start segment; ending session: %s", exc)
            stream.close()
            self._finish()

    def _finish(self) -> None:
        if self.state is SessionState.FINISHED:
            return
        self.state = SessionState.FINISHED
        self._cancel_segment_timer()
        if self._session_timer is not None:
            self._session_timer.cancel()
            self._session_timer = None
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        LOGGER.info("Session finished after %d ms; %d segment(s) outstanding", self.elapsed_ms, self._pending)
        self._maybe_complete()

    def _remaining(self) -> float:
        assert self._loop is not None
        return self.config.max_total_duration - (self._loop.time() - self._t0)

    def _cancel_segment_timer(self) -> None:
        if self._segment_timer is not None:
            self._segment_timer.cancel()
            self._segment_timer = None

    # -- event handlers ---------------------------------------------------

    def _on_speech_started(self, active: _ActiveSegment) -> None:
        active.has_speech = True
        active.speaking = True

    def _on_speech_stopped(self, active: _ActiveSegment) -> None:
        active.speaking = False

    def _on_silence(self, active: _ActiveSegment) -> None:
        if active is self._active:
            self._end_segment(EndReason.SILENCE)

    def _on_segment_timeout(self, active: _ActiveSegment) -> None:
        if active is self._active:
            LOGGER.debug("Segment %d hit its duration ceiling", active.sequence)
            self._end_segment(EndReason.SEGMENT_TIMEOUT)

    def _on_session_timeout(self) -> None:
        self._session_timer = None
        LOGGER.info("Session duration ceiling reached")
        if self.state is SessionState.RECORDING:
            self._end_segment(EndReason.SESSION_TIMEOUT)
        elif self.state is SessionState.ENDING_SEGMENT:
            self._finish()

    def _on_segment_finalized(self, active: _ActiveSegment, blob: AudioBlob) -> None:
        assert self._results is not None
        if not active.has_speech or blob.size == 0:
            LOGGER.debug("Segment %d discarded (no speech)", active.sequence)
            self._results.put_nowait(None)
            return
        self._spawn(self._score_segment(active, blob))

    async def _score_segment(self, active: _ActiveSegment, blob: AudioBlob) -> None:
        assert self._results is not None
        segment: Optional[Segment] = None
        try:
            segment = await self.pipeline.process(
                blob,
                sequence=active.sequence,
                timestamp_ms=int((active.started_at - self._t0) * 1000),
            )
        except Exception:
            LOGGER.exception("Scoring pipeline crashed for segment %d", active.sequence)
        finally:
            self._results.put_nowait(segment)

    # -- results ----------------------------------------------------------

    async def _collect(self) -> None:
        assert self._results is not None
        while not self._completed:
            item = await self._results.get()
            if item is _CLOSE:
                return
            self._pending -= 1
            if item is not None:
                self._segments.append(item)
                LOGGER.info(
                    "Segment %d processed (score=%s)",
                    item.sequence,
                    item.score.pronunciation_score() if item.score else None,
                )
                self._notify(self.config.on_segment_processed, item)
            self._maybe_complete()

    def _maybe_complete(self) -> None:
        if self._completed or self.state is not SessionState.FINISHED or self._pending > 0:
            return
        self._completed = True
        segments = list(self._segments)
        LOGGER.info("Session complete with %d segment(s)", len(segments))
        self._notify(self.config.on_complete, segments)
        if self._done is not None and not self._done.done():
            self._done.set_result(segments)
        if self._results is not None:
            self._results.put_nowait(_CLOSE)

    def _notify(self, callback: Optional[Callable], payload) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            LOGGER.exception("Session callback raised")

    def _spawn(self, coro) -> asyncio.Task:
        assert self._loop is not None
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


__all__ = ["AudioSession", "SessionError", "StreamFactory"]
