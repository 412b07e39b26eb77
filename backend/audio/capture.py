"""
Microphone capture.

Responsibilities:
- Probe the default input device with the capture format
- Open a PCM16 16kHz mono input stream and deliver 20ms frames to the
  event loop

Non-responsibilities:
- No ownership arbitration (see audio.microphone)
- No recognition logic
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any

import sounddevice as sd

from observability.logger import log_event
from constants import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLES_PER_FRAME,
    CAPTURE_QUEUE_MAX_FRAMES,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def input_device_available() -> bool:
    """
    Probe the default input device with the capture format.

    Returns False when the device is missing or the OS refuses access.
    """
    try:
        sd.check_input_settings(
            samplerate=AUDIO_SAMPLE_RATE_HZ,
            channels=AUDIO_CHANNELS,
            dtype="int16",
        )
    except (sd.PortAudioError, ValueError) as exc:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "microphone_probe_failed",
            "level": "WARNING",
            "error": f"{type(exc).__name__}: {exc}",
        })
        return False
    return True


class CaptureStream:
    """
    PCM16 input stream delivering 20ms frames onto the event loop.

    The PortAudio callback runs on a foreign thread; frames hop to the
    loop with call_soon_threadsafe. The frame queue is bounded and drops
    the oldest frame on overflow.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: sd.RawInputStream | None = None
        self._frames: deque[bytes] = deque(maxlen=CAPTURE_QUEUE_MAX_FRAMES)
        self._ready = asyncio.Event()
        self._closed = False

    def open(self) -> None:
        """
        Open and start the input stream.

        Raises sounddevice.PortAudioError if the device cannot be opened.
        """
        self._loop = asyncio.get_running_loop()
        self._stream = sd.RawInputStream(
            samplerate=AUDIO_SAMPLE_RATE_HZ,
            channels=AUDIO_CHANNELS,
            dtype="int16",
            blocksize=AUDIO_SAMPLES_PER_FRAME,
            callback=self._on_audio,
        )
        self._stream.start()

    def close(self) -> None:
        """Idempotent."""
        self._closed = True
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.stop()
            stream.close()
        self._ready.set()

    async def read(self) -> bytes | None:
        """Next frame, or None once the stream is closed and drained."""
        while not self._frames:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._frames.popleft()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        loop = self._loop
        if loop is None or self._closed:
            return
        loop.call_soon_threadsafe(self._push, bytes(indata))

    def _push(self, frame: bytes) -> None:
        if self._closed:
            return
        self._frames.append(frame)
        self._ready.set()
