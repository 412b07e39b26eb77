"""
Deepgram live speech-to-text capability (Flux, v2/listen).

Core model:
- One websocket connection per capture session (start() -> on_end).
- Microphone frames (PCM16 mono 16kHz, 20ms) are captured with
  sounddevice and streamed as binary messages.
- Deepgram TurnInfo events are translated into platform-style results:
    - Update    -> interim RecognitionResult (only if interim_results)
    - EndOfTurn -> final RecognitionResult
- Non-continuous sessions end naturally after the first final.
- Continuous sessions end naturally at the platform session limit.
- No speech within the no-speech window -> on_error("no-speech"), on_end.

Design constraints:
- Capability must not accumulate transcripts or decide outcomes.
- Every exit path fires on_end exactly once.
"""

from __future__ import annotations

import asyncio
import json
import time
import urllib.parse
from typing import Any

import sounddevice as sd
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from audio.capture import CaptureStream, input_device_available
from observability.logger import log_event
from orchestrator.errors import CapabilityUnavailableError
from recognition.base import RecognitionResult, SpeechCapability
from constants import (
    AUDIO_SAMPLE_RATE_HZ,
    PLATFORM_ERROR_ABORTED,
    PLATFORM_ERROR_AUDIO_CAPTURE,
    PLATFORM_ERROR_NETWORK,
    PLATFORM_ERROR_NO_SPEECH,
    PLATFORM_ERROR_NOT_ALLOWED,
    RECOGNITION_EOT_TIMEOUT_MS,
    RECOGNITION_MAX_SESSION_S,
    RECOGNITION_NO_SPEECH_TIMEOUT_S,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


_POLL_S = 0.1
_DRAIN_TIMEOUT_S = 2.0


class DeepgramSpeechCapability(SpeechCapability):
    """
    Live Deepgram recognizer bound to the local default microphone.

    Public interface is the SpeechCapability contract:
    - request_permission(): probe default input device
    - start(): spawn the capture task (returns immediately)
    - stop(): send CloseStream, deliver trailing finals, then end
    - abort(): cancel the capture task; error "aborted", then end
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "flux-general-en",
        eot_timeout_ms: int = RECOGNITION_EOT_TIMEOUT_MS,
        no_speech_timeout_s: float = RECOGNITION_NO_SPEECH_TIMEOUT_S,
        max_session_s: float = RECOGNITION_MAX_SESSION_S,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise CapabilityUnavailableError("DEEPGRAM_API_KEY not set")

        self._api_key = api_key
        self._model = model
        self._eot_timeout_ms = eot_timeout_ms
        self._no_speech_timeout_s = no_speech_timeout_s
        self._max_session_s = max_session_s

        self._task: asyncio.Task[None] | None = None
        self._stop_requested = False
        self._draining = False

    # ------------------------------------------------------------------
    # SpeechCapability contract
    # ------------------------------------------------------------------

    async def request_permission(self) -> bool:
        return await asyncio.to_thread(input_device_available)

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("recognition already started")

        self._stop_requested = False
        self._draining = False
        self._task = asyncio.create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    def stop(self) -> None:
        if self._task is None:
            return
        self._stop_requested = True

    def abort(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()

    # ------------------------------------------------------------------
    # Capture session
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        error: str | None = None
        capture = CaptureStream()

        try:
            try:
                capture.open()
            except sd.PortAudioError as exc:
                error = self._classify_open_error(exc)
                return

            async with connect(
                self._build_url(),
                additional_headers={"Authorization": f"Token {self._api_key}"},
                max_size=2**22,
                ping_interval=None,
            ) as ws:
                self.on_start()
                sender = asyncio.create_task(self._pump(ws, capture))
                try:
                    error = await self._receive(ws, sender)
                finally:
                    sender.cancel()
                    await asyncio.gather(sender, return_exceptions=True)

        except asyncio.CancelledError:
            error = PLATFORM_ERROR_ABORTED

        except (OSError, WebSocketException) as exc:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "deepgram_connection_failed",
                "level": "WARNING",
                "error": f"{type(exc).__name__}: {exc}",
            })
            error = PLATFORM_ERROR_NETWORK

        finally:
            capture.close()
            self._task = None
            if error is not None:
                self.on_error(error)
            self.on_end()

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        # _run absorbs its own cancellation; a cancelled task never ran
        if not task.cancelled():
            return
        if self._task is task:
            self._task = None
        self.on_error(PLATFORM_ERROR_ABORTED)
        self.on_end()

    async def _pump(self, ws: ClientConnection, capture: CaptureStream) -> None:
        while not self._draining:
            frame = await capture.read()
            if frame is None:
                return
            await ws.send(frame)

    async def _receive(
        self,
        ws: ClientConnection,
        sender: asyncio.Task[None],
    ) -> str | None:
        """
        Translate Deepgram messages until the session ends.

        Returns a platform error code, or None for a natural end.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        drain_started: float | None = None
        heard_speech = False

        while True:
            now = loop.time()

            if self._stop_requested and not self._draining:
                self._draining = True
                drain_started = now
                await ws.send(json.dumps({"type": "CloseStream"}))

            if drain_started is not None and now - drain_started >= _DRAIN_TIMEOUT_S:
                return None

            if sender.done() and not self._draining:
                return PLATFORM_ERROR_NETWORK

            if not heard_speech and now - started >= self._no_speech_timeout_s:
                return PLATFORM_ERROR_NO_SPEECH

            if now - started >= self._max_session_s:
                return None

            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=_POLL_S)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosedOK:
                return None

            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                continue

            msg_type = data.get("type")

            if msg_type == "Error":
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "deepgram_error_message",
                    "level": "WARNING",
                    "code": data.get("code"),
                    "description": data.get("description"),
                })
                return PLATFORM_ERROR_NETWORK

            if msg_type != "TurnInfo":
                continue

            event = data.get("event")
            raw_transcript = data.get("transcript")
            transcript = raw_transcript.strip() if isinstance(raw_transcript, str) else ""

            if event == "StartOfTurn":
                heard_speech = True

            elif event == "Update":
                if transcript:
                    heard_speech = True
                    if self.interim_results:
                        self.on_result([RecognitionResult(transcript, is_final=False)])

            elif event == "EndOfTurn":
                if transcript:
                    heard_speech = True
                    self.on_result([RecognitionResult(transcript, is_final=True)])
                    if not self.continuous:
                        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_url(self) -> str:
        params: dict[str, str] = {
            "model": self._model,
            "encoding": "linear16",
            "sample_rate": str(AUDIO_SAMPLE_RATE_HZ),
            "eot_timeout_ms": str(int(self._eot_timeout_ms)),
        }
        qs = urllib.parse.urlencode(params)
        return f"wss://api.deepgram.com/v2/listen?{qs}"

    @staticmethod
    def _classify_open_error(exc: sd.PortAudioError) -> str:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "microphone_open_failed",
            "level": "WARNING",
            "error": f"{type(exc).__name__}: {exc}",
        })
        try:
            sd.query_devices(kind="input")
        except (sd.PortAudioError, ValueError):
            return PLATFORM_ERROR_AUDIO_CAPTURE
        return PLATFORM_ERROR_NOT_ALLOWED
