"""
ElevenLabs speech output (primary, networked).

Role in the system:
- Performs one text-to-speech call per utterance (PCM16 16kHz mono).
- Validates the payload before anything is played.
- Plays the buffer through the local speaker and reports completion
  once the last sample was played.

Failure mapping (all raise SynthesisProviderError from begin()):
- ApiError (non-2xx)                 -> http_status
- odd PCM16 byte count               -> malformed_payload
- transport exception / timeout      -> network
- zero audio bytes                   -> empty_audio
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from elevenlabs.client import AsyncElevenLabs
from elevenlabs.core import ApiError

from audio.pcm import pcm16le_to_int16
from observability.logger import log_event
from orchestrator.errors import CapabilityUnavailableError, SynthesisProviderError
from synthesis.base import CompleteHandler, PlaybackErrorHandler, SpeechOutput
from constants import PRIMARY_SYNTHESIS_TIMEOUT_S

if TYPE_CHECKING:
    from audio.playback import AudioPlayer


class ElevenLabsSpeechOutput(SpeechOutput):
    """ElevenLabs fetch-then-play output."""

    name = "elevenlabs"

    def __init__(
        self,
        *,
        api_key: str | None,
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",  # default ElevenLabs voice
        model_id: str = "eleven_turbo_v2",
        timeout_s: float = PRIMARY_SYNTHESIS_TIMEOUT_S,
        client: AsyncElevenLabs | None = None,
        player: AudioPlayer | None = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise CapabilityUnavailableError("ELEVENLABS_API_KEY not set")
            client = AsyncElevenLabs(api_key=api_key)

        self._client = client
        self._voice_id = voice_id
        self._model_id = model_id
        self._timeout_s = timeout_s
        if player is None:
            # PortAudio is loaded only when real playback is needed
            from audio.playback import AudioPlayer  # pylint: disable=import-outside-toplevel
            player = AudioPlayer()
        self._player = player

    # ------------------------------------------------------------------
    # SpeechOutput contract
    # ------------------------------------------------------------------

    async def begin(
        self,
        text: str,
        *,
        on_complete: CompleteHandler,
        on_error: PlaybackErrorHandler,
    ) -> None:
        t0 = time.monotonic_ns()
        pcm = await self._fetch(text)
        samples = pcm16le_to_int16(pcm)

        log_event({
            "ts_ms": self._now_ms(),
            "event_type": "elevenlabs_audio_ready",
            "level": "DEBUG",
            "chars": len(text),
            "pcm_bytes": len(pcm),
            "fetch_ms": (time.monotonic_ns() - t0) // 1_000_000,
        })

        self._player.play(samples, on_finished=on_complete, on_error=on_error)

    def halt(self) -> None:
        self._player.halt()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _fetch(self, text: str) -> bytes:
        try:
            pcm = await asyncio.wait_for(self._collect(text), timeout=self._timeout_s)
        except ApiError as exc:
            raise SynthesisProviderError("http_status", f"status={exc.status_code}") from exc
        except asyncio.TimeoutError as exc:
            raise SynthesisProviderError("network", f"timeout after {self._timeout_s}s") from exc
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise SynthesisProviderError("network", f"{type(exc).__name__}: {exc}") from exc

        if not pcm:
            raise SynthesisProviderError("empty_audio", "provider returned no audio")
        return pcm

    async def _collect(self, text: str) -> bytes:
        buffer = bytearray()
        async for chunk in self._client.text_to_speech.convert(
            voice_id=self._voice_id,
            model_id=self._model_id,
            text=text,
            output_format="pcm_16000",
        ):
            if chunk:
                buffer.extend(chunk)
        return bytes(buffer)

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)
