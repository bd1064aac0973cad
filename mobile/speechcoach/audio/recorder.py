"""Single-segment recorder: buffers stream chunks and finalizes one blob."""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Callable, Iterable, Optional

import numpy as np
import soundfile as sf

from .microphone import AudioStream
from .types import AudioBlob

LOGGER = logging.getLogger("speechcoach.recorder")

MIME_TYPES = {"flac": "audio/flac", "wav": "audio/wav", "raw": "audio/pcm"}


def encode_pcm(pcm: bytes, sample_rate: int, channels: int, audio_format: str = "flac") -> AudioBlob:
    """Wrap interleaved int16 PCM into the requested container."""
    samples = np.frombuffer(pcm, dtype=np.int16)
    frames = samples.size // max(1, channels)
    if audio_format == "raw" or not pcm:
        return AudioBlob(
            data=bytes(pcm),
            mime_type=MIME_TYPES.get(audio_format, "audio/pcm"),
            sample_rate=sample_rate,
            channels=channels,
            sample_count=frames,
        )
    if channels > 1:
        samples = samples[: frames * channels].reshape(frames, channels)
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format=audio_format.upper(), subtype="PCM_16")
    return AudioBlob(
        data=buffer.getvalue(),
        mime_type=MIME_TYPES[audio_format],
        sample_rate=sample_rate,
        channels=channels,
        sample_count=frames,
    )


def decode_blob(blob: AudioBlob) -> np.ndarray:
    """Return the blob's samples as int16 frames (mono → 1-D)."""
    if blob.mime_type == "audio/pcm" or not blob.data:
        samples = np.frombuffer(blob.data, dtype=np.int16)
        if blob.channels > 1:
            return samples.reshape(-1, blob.channels)
        return samples
    data, _ = sf.read(io.BytesIO(blob.data), dtype="int16")
    return data


def combine_blobs(blobs: Iterable[AudioBlob], audio_format: str = "flac") -> Optional[AudioBlob]:
    """Decode every blob and re-encode them back to back as one blob."""
    blobs = [blob for blob in blobs if blob.size]
    if not blobs:
        return None
    sample_rate = blobs[0].sample_rate
    channels = blobs[0].channels
    parts = []
    for blob in blobs:
        if blob.sample_rate != sample_rate or blob.channels != channels:
            raise ValueError("Cannot combine blobs with different sample layouts")
        parts.append(decode_blob(blob))
    merged = np.concatenate(parts).astype(np.int16, copy=False)
    return encode_pcm(merged.tobytes(), sample_rate, channels, audio_format)


class SegmentRecorder:
    """Buffers chunks from an already-acquired stream for one segment.

    ``stop`` returns immediately; the blob is delivered later through
    ``on_finalized`` once encoding has finished. The recorder owns the stream
    and releases it when stopped.
    """

    def __init__(
        self,
        stream: AudioStream,
        on_finalized: Callable[[AudioBlob], None],
        *,
        audio_format: str = "flac",
    ) -> None:
        self.stream = stream
        self.on_finalized = on_finalized
        self.audio_format = audio_format
        self.state = "inactive"
        self._chunks: list[bytes] = []
        self._finalize_task: asyncio.Task | None = None

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def start(self) -> None:
        if self.state != "inactive":
            raise RuntimeError(f"Recorder already {self.state}")
        if not self.stream.active:
            raise RuntimeError("Cannot record from a released stream")
        self._chunks = []
        self.stream.add_listener(self._on_data)
        self.state = "recording"

    def _on_data(self, chunk: bytes) -> None:
        if self.state != "recording" or not chunk:
            return
        self._chunks.append(chunk)

    def stop(self) -> asyncio.Task | None:
        if self.state != "recording":
            return None
        self.state = "stopping"
        self.stream.remove_listener(self._on_data)
        self.release()
        loop = asyncio.get_running_loop()
        self._finalize_task = loop.create_task(self._finalize())
        return self._finalize_task

    def release(self) -> None:
        """Release the underlying device; safe to call repeatedly."""
        if self.stream.active:
            self.stream.close()

    async def _finalize(self) -> None:
        pcm = b"".join(self._chunks)
        self._chunks = []
        loop = asyncio.get_running_loop()
        try:
            blob = await loop.run_in_executor(
                None,
                encode_pcm,
                pcm,
                self.stream.sample_rate,
                self.stream.channels,
                self.audio_format,
            )
        except Exception as exc:
            LOGGER.warning("Encoding failed (%s); keeping raw PCM", exc)
            blob = encode_pcm(pcm, self.stream.sample_rate, self.stream.channels, "raw")
        self.state = "inactive"
        LOGGER.debug("Segment finalized: %d bytes (%s)", blob.size, blob.mime_type)
        self.on_finalized(blob)


__all__ = ["MIME_TYPES", "SegmentRecorder", "combine_blobs", "decode_blob", "encode_pcm"]
