"""
Speaker playback.

Responsibilities:
- Play a PCM16 mono buffer through the default output device
- Signal completion via callback only after the last sample was played
- Support immediate halt

The PortAudio finished_callback fires on a foreign thread; completion
hops to the event loop with call_soon_threadsafe, where the finished
stream is closed before on_finished runs.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import numpy as np
import sounddevice as sd

from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ


class AudioPlayer:
    """Callback-driven player for one buffer at a time."""

    def __init__(self, *, sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._stream: sd.OutputStream | None = None
        self._samples: np.ndarray = np.zeros(0, dtype=np.int16)
        self._cursor = 0
        self._halted = False

    @property
    def playing(self) -> bool:
        return self._stream is not None

    def play(
        self,
        samples: np.ndarray,
        *,
        on_finished: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        """
        Start playback of int16 samples.

        on_finished fires once playback reached the end of the buffer.
        on_error fires if the output device reports a failure. Neither
        fires after halt().
        """
        self.halt()
        loop = asyncio.get_running_loop()

        self._samples = samples
        self._cursor = 0
        self._halted = False

        def _complete(stream: sd.OutputStream) -> None:
            # halt() or a newer play() already closed this stream
            if self._halted or self._stream is not stream:
                return
            self._stream = None
            stream.close()
            on_finished()

        def _finished() -> None:
            if self._halted:
                return
            loop.call_soon_threadsafe(_complete, stream)

        try:
            stream = sd.OutputStream(
                samplerate=self._sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="int16",
                callback=self._fill,
                finished_callback=_finished,
            )
            self._stream = stream
            stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            on_error(f"{type(exc).__name__}: {exc}")

    def halt(self) -> None:
        """Stop output immediately. Idempotent."""
        self._halted = True
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.abort()
            stream.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fill(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        end = self._cursor + frames
        chunk = self._samples[self._cursor:end]
        self._cursor = end

        outdata[: len(chunk), 0] = chunk
        if len(chunk) < frames:
            outdata[len(chunk):, 0] = 0
            raise sd.CallbackStop
