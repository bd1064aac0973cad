"""Dataclasses and enums shared across audio helpers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..services.schemas import ScoreResult


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    ENDING_SEGMENT = "ending_segment"
    FINISHED = "finished"


class EndReason(str, Enum):
    """Why the active segment was cut."""

    SILENCE = "silence"
    SEGMENT_TIMEOUT = "segment_timeout"
    SESSION_TIMEOUT = "session_timeout"
    STOPPED = "stopped"

    @property
    def continues_session(self) -> bool:
        return self in (EndReason.SILENCE, EndReason.SEGMENT_TIMEOUT)


class VadEvent(str, Enum):
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    SILENCE_DETECTED = "silence_detected"


@dataclass(slots=True, frozen=True)
class AudioBlob:
    """Finalized audio for one segment."""

    data: bytes
    mime_type: str
    sample_rate: int
    channels: int
    sample_count: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def duration_s(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.sample_count / float(self.sample_rate)

    @property
    def extension(self) -> str:
        if self.mime_type == "audio/flac":
            return "flac"
        if self.mime_type == "audio/wav":
            return "wav"
        return "pcm"


@dataclass(slots=True)
class Segment:
    """One recorded utterance and whatever the scoring pipeline produced for it.

    ``timestamp_ms`` is the segment's start relative to the session start and
    ``sequence`` its 1-based recording order.
    """

    sequence: int
    audio: AudioBlob
    timestamp_ms: int
    has_speech: bool = True
    ground_truth: str = ""
    transcription: str = ""
    validated_transcription: str = ""
    score: Optional["ScoreResult"] = None

    @property
    def scored(self) -> bool:
        return self.score is not None
