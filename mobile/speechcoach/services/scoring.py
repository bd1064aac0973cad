"""Per-segment scoring: ground truth lookup followed by pronunciation scoring."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, Protocol, TypeVar

from ..audio.types import AudioBlob, Segment
from ..config import GroundTruthMode, SessionConfig
from .schemas import ScoreResult, TranscriptionResult

LOGGER = logging.getLogger("speechcoach.scoring")

T = TypeVar("T")


class Transcriber(Protocol):
    async def transcribe(self, audio: AudioBlob, *, language: str = "en") -> TranscriptionResult: ...


class PronunciationScorer(Protocol):
    async def score(
        self,
        audio: AudioBlob,
        reference_text: str,
        *,
        dialect: str = "en-us",
        tag: Optional[str] = None,
        language: Optional[str] = None,
    ) -> ScoreResult: ...


class ScoringPipeline:
    """Turns a finalized blob into a ``Segment``.

    Downstream failures never propagate: a failed transcription leaves the
    transcription fields empty and a failed scoring call leaves ``score`` unset.
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        scorer: PronunciationScorer,
        transcriber: Transcriber | None = None,
    ) -> None:
        if config.ground_truth_mode is GroundTruthMode.TRANSCRIBED and transcriber is None:
            raise ValueError("transcription mode needs a transcriber")
        self.config = config
        self.scorer = scorer
        self.transcriber = transcriber

    async def process(self, audio: AudioBlob, *, sequence: int, timestamp_ms: int) -> Segment:
        segment = Segment(sequence=sequence, audio=audio, timestamp_ms=timestamp_ms)

        if self.config.ground_truth_mode is GroundTruthMode.FIXED:
            segment.ground_truth = self.config.fixed_ground_truth or ""
        else:
            result = await self._transcribe(audio, sequence)
            if result is not None:
                segment.transcription = result.text
                segment.validated_transcription = result.text
                segment.ground_truth = result.text.strip()

        if not segment.ground_truth:
            LOGGER.warning("Segment %d has no reference text; scoring skipped", sequence)
            return segment

        segment.score = await self._score(audio, segment.ground_truth, sequence)
        return segment

    async def _transcribe(self, audio: AudioBlob, sequence: int) -> Optional[TranscriptionResult]:
        assert self.transcriber is not None
        try:
            return await self._bounded(self.transcriber.transcribe(audio, language=self.config.language))
        except Exception as exc:
            LOGGER.warning("Transcription failed for segment %d: %r", sequence, exc)
            return None

    async def _score(self, audio: AudioBlob, reference_text: str, sequence: int) -> Optional[ScoreResult]:
        try:
            return await self._bounded(
                self.scorer.score(
                    audio,
                    reference_text,
                    dialect=self.config.dialect,
                    tag=f"segment_{sequence}",
                    language=self.config.language,
                )
            )
        except Exception as exc:
            LOGGER.warning("Scoring failed for segment %d: %r", sequence, exc)
            return None

    async def _bounded(self, call: Awaitable[T]) -> T:
        timeout = self.config.downstream_timeout
        if timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout)


__all__ = ["PronunciationScorer", "ScoringPipeline", "Transcriber"]
