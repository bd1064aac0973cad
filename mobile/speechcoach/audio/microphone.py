"""Live microphone access on top of sounddevice."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

import numpy as np

LOGGER = logging.getLogger("speechcoach.microphone")

ChunkListener = Callable[[bytes], None]


class MicrophoneError(RuntimeError):
    """Raised when the input device cannot be opened."""


class AudioStream(Protocol):
    """What the detector and recorder need from a live input stream."""

    sample_rate: int
    channels: int

    @property
    def active(self) -> bool: ...

    def read_window(self) -> np.ndarray: ...

    def add_listener(self, listener: ChunkListener) -> None: ...

    def remove_listener(self, listener: ChunkListener) -> None: ...

    def close(self) -> None: ...


class MicrophoneStream:
    """Wraps a ``sounddevice.InputStream``.

    PortAudio delivers blocks on its own thread; every block is handed back to
    the event loop so listeners and the sampling window are only touched from
    the loop thread.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        sample_rate: int = 16000,
        channels: int = 1,
        block_ms: int = 100,
        window_size: int = 256,
        device: int | str | None = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.window_size = window_size
        self._loop = loop
        self._listeners: list[ChunkListener] = []
        self._window = np.zeros(window_size, dtype=np.int16)
        self._closed = False
        import sounddevice as sd

        blocksize = max(1, int(sample_rate * block_ms / 1000))
        self._stream = sd.InputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="int16",
            blocksize=blocksize,
            device=device,
            callback=self._callback,
        )
        try:
            self._stream.start()
        except Exception:
            self._stream.close()
            raise

    @property
    def active(self) -> bool:
        return not self._closed

    def _callback(self, indata, frames, time_info, status) -> None:  # noqa: ARG002
        if status:
            LOGGER.debug("Input status: %s", status)
        block = np.array(indata, dtype=np.int16, copy=True)
        try:
            self._loop.call_soon_threadsafe(self._deliver, block)
        except RuntimeError:
            # Loop already closed; the stream is being torn down.
            return

    def _deliver(self, block: np.ndarray) -> None:
        if self._closed:
            return
        mono = self._to_mono_array(block)
        self._push_window(mono)
        payload = block.tobytes()
        for listener in list(self._listeners):
            listener(payload)

    def _push_window(self, mono: np.ndarray) -> None:
        if mono.size >= self.window_size:
            self._window = mono[-self.window_size :].copy()
            return
        self._window = np.concatenate([self._window[mono.size :], mono])

    def read_window(self) -> np.ndarray:
        return self._window.copy()

    def add_listener(self, listener: ChunkListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChunkListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        try:
            self._stream.abort()
        finally:
            self._stream.close()
        LOGGER.debug("Microphone released")

    @staticmethod
    def _to_mono_array(data: np.ndarray) -> np.ndarray:
        if data.ndim == 1:
            return data
        return data[:, 0]


async def open_microphone(
    *,
    sample_rate: int = 16000,
    channels: int = 1,
    block_ms: int = 100,
    window_size: int = 256,
    device: int | str | None = None,
) -> MicrophoneStream:
    """Acquire a fresh input stream; raises ``MicrophoneError`` on failure."""

    loop = asyncio.get_running_loop()

    def _open() -> MicrophoneStream:
        return MicrophoneStream(
            loop,
            sample_rate=sample_rate,
            channels=channels,
            block_ms=block_ms,
            window_size=window_size,
            device=device,
        )

    try:
        stream = await loop.run_in_executor(None, _open)
    except Exception as exc:
        raise MicrophoneError(f"Microphone unavailable: {exc}") from exc
    LOGGER.debug("Microphone acquired (%d Hz, %d ch)", sample_rate, channels)
    return stream


__all__ = ["AudioStream", "ChunkListener", "MicrophoneError", "MicrophoneStream", "open_microphone"]
