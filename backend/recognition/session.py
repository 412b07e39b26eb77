"""
Recognition session: event-callback to awaitable-outcome bridge.

Responsibilities:
- Own one capture lifetime of a SpeechCapability
- Hold the microphone from start() until the terminal outcome is delivered
- Accumulate final segments, replace interim text, fan updates out to
  subscribers
- Classify platform errors and resolve exactly one RecognitionOutcome

Non-responsibilities:
- No restart policy (the wake word detector owns its own)
- No loop decisions about what an outcome means
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Sequence

from audio.microphone import Microphone
from observability.logger import log_event
from orchestrator.errors import CapabilityUnavailableError
from recognition.base import (
    CapabilityFactory,
    RecognitionErrorCode,
    RecognitionResult,
    RecognitionStatus,
    SessionState,
    SpeechCapability,
)
from constants import (
    PLATFORM_ERROR_ABORTED,
    PLATFORM_ERROR_AUDIO_CAPTURE,
    PLATFORM_ERROR_NETWORK,
    PLATFORM_ERROR_NO_SPEECH,
    PLATFORM_ERROR_NOT_ALLOWED,
    PLATFORM_ERROR_SERVICE_NOT_ALLOWED,
    RECOGNITION_LANGUAGE_DEFAULT,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Value types
# =============================================================================

@dataclass(frozen=True)
class TranscriptUpdate:
    """Incremental transcript notification for subscribers."""
    session_id: str
    interim_text: str
    final_text: str
    segment: str
    is_final: bool


@dataclass(frozen=True)
class RecognitionOutcome:
    """Terminal outcome of one RecognitionSession."""
    status: RecognitionStatus
    text: str = ""
    error: RecognitionErrorCode | None = None
    detail: str | None = None


TranscriptListener = Callable[[TranscriptUpdate], None]


_ERROR_CODES: dict[str, RecognitionErrorCode] = {
    PLATFORM_ERROR_NOT_ALLOWED: RecognitionErrorCode.PERMISSION_DENIED,
    PLATFORM_ERROR_SERVICE_NOT_ALLOWED: RecognitionErrorCode.PERMISSION_DENIED,
    PLATFORM_ERROR_NETWORK: RecognitionErrorCode.NETWORK,
    PLATFORM_ERROR_ABORTED: RecognitionErrorCode.ABORTED,
    PLATFORM_ERROR_AUDIO_CAPTURE: RecognitionErrorCode.UNKNOWN,
}


def classify_platform_error(code: str) -> RecognitionErrorCode | None:
    """
    Map a platform error code to a session error class.

    Returns None for "no-speech", which is not a hard error: the
    session resolves NO_SPEECH when the platform ends.
    """
    if code == PLATFORM_ERROR_NO_SPEECH:
        return None
    return _ERROR_CODES.get(code, RecognitionErrorCode.UNKNOWN)


# =============================================================================
# Session
# =============================================================================

class RecognitionSession:
    """
    One capture lifetime bridged into a single-resolution future.

    Lifecycle:
        IDLE -> STARTING (start(): microphone acquired, permission requested)
             -> LISTENING (capability on_start)
             -> STOPPING (stop(): graceful drain)
             -> ENDED (outcome resolved, microphone released)

    Guarantees:
    - The outcome resolves exactly once; events that arrive after
      resolution (e.g. error after end) are ignored.
    - Permission refusal resolves FAILED/PERMISSION_DENIED without ever
      reaching LISTENING.
    """

    def __init__(
        self,
        capability: SpeechCapability,
        *,
        microphone: Microphone,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or f"rec_{uuid.uuid4().hex[:8]}"
        self._capability = capability
        self._microphone = microphone

        self.state = SessionState.IDLE
        self.interim_text = ""
        self.final_text = ""
        self.error_code: RecognitionErrorCode | None = None

        self._listeners: list[TranscriptListener] = []
        self._outcome: asyncio.Future[RecognitionOutcome] | None = None
        self._boot_task: asyncio.Task[None] | None = None
        self._capture_started = False
        self._no_speech_reported = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def resolved(self) -> bool:
        return self._outcome is not None and self._outcome.done()

    def subscribe(self, listener: TranscriptListener) -> Callable[[], None]:
        """Register a transcript listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def start(self) -> RecognitionSession:
        """
        Acquire the microphone and begin the session.

        Returns immediately (the handle); permission and capture start
        proceed on the event loop.

        Raises:
            MicrophoneBusyError if another owner holds the microphone.
            RuntimeError if this session was already started.
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"session {self.session_id} already started")

        self._microphone.acquire(self.session_id)

        self._outcome = asyncio.get_running_loop().create_future()
        self.state = SessionState.STARTING
        self._log("recognition_session_starting", {
            "continuous": self._capability.continuous,
            "interim_results": self._capability.interim_results,
        })

        self._boot_task = asyncio.create_task(self._boot())
        return self

    def stop(self) -> None:
        """
        Graceful stop.

        - Before capture started: resolves FAILED/ABORTED, capture never runs.
        - While capturing: asks the platform to drain; the outcome carries
          whatever final text accumulated.
        - Idempotent.
        """
        if self.resolved or self.state is SessionState.IDLE:
            return

        if not self._capture_started:
            self._resolve(RecognitionOutcome(
                status=RecognitionStatus.FAILED,
                error=RecognitionErrorCode.ABORTED,
                detail="stopped_before_capture",
            ))
            return

        if self.state is SessionState.STOPPING:
            return

        self.state = SessionState.STOPPING
        self._log("recognition_session_stopping", {
            "final_chars": len(self.final_text),
        })
        self._capability.stop()

    def abort(self) -> None:
        """Immediate termination; resolves FAILED/ABORTED. Idempotent."""
        if self.resolved or self.state is SessionState.IDLE:
            return
        self._fail(RecognitionErrorCode.ABORTED, "aborted_by_owner")

    async def outcome(self) -> RecognitionOutcome:
        """
        Await the terminal outcome.

        Cancelling the awaiting task does not cancel the session.
        """
        if self._outcome is None:
            raise RuntimeError(f"session {self.session_id} not started")
        return await asyncio.shield(self._outcome)

    # ------------------------------------------------------------------
    # Boot
    # ------------------------------------------------------------------

    async def _boot(self) -> None:
        try:
            granted = await self._capability.request_permission()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._fail(RecognitionErrorCode.UNKNOWN, f"permission_probe_failed: {exc!r}")
            return

        if self.resolved:
            return

        if not granted:
            self._fail(RecognitionErrorCode.PERMISSION_DENIED, "permission_refused")
            return

        cap = self._capability
        cap.on_start = self._handle_start
        cap.on_result = self._handle_result
        cap.on_error = self._handle_error
        cap.on_end = self._handle_end

        try:
            cap.start()
        except RuntimeError as exc:
            self._fail(RecognitionErrorCode.UNKNOWN, f"start_failed: {exc}")
            return

        self._capture_started = True

    # ------------------------------------------------------------------
    # Capability event handlers
    # ------------------------------------------------------------------

    def _handle_start(self) -> None:
        if self.resolved or self.state is not SessionState.STARTING:
            return
        self.state = SessionState.LISTENING
        self._log("recognition_session_listening", {})

    def _handle_result(self, results: Sequence[RecognitionResult]) -> None:
        if self.resolved:
            return

        interim_parts: list[str] = []
        for result in results:
            segment = result.transcript.strip()
            if not segment:
                continue

            if result.is_final:
                self.final_text = f"{self.final_text} {segment}".strip()
                self._notify(segment, is_final=True)
            else:
                interim_parts.append(segment)

        if interim_parts:
            self.interim_text = " ".join(interim_parts)
            self._notify(self.interim_text, is_final=False)
        elif any(r.is_final for r in results):
            # Finals supersede the previous hypothesis
            self.interim_text = ""

    def _handle_error(self, code: str) -> None:
        if self.resolved:
            return

        classified = classify_platform_error(code)
        if classified is None:
            self._no_speech_reported = True
            self._log("recognition_no_speech_reported", {})
            return

        self._fail(classified, code)

    def _handle_end(self) -> None:
        if self.resolved:
            return

        text = self.final_text.strip()
        if text:
            self._resolve(RecognitionOutcome(
                status=RecognitionStatus.TRANSCRIBED,
                text=text,
            ))
        else:
            self._resolve(RecognitionOutcome(
                status=RecognitionStatus.NO_SPEECH,
                detail="no_speech" if self._no_speech_reported else "empty_transcript",
            ))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fail(self, code: RecognitionErrorCode, detail: str) -> None:
        self.error_code = code
        self._resolve(RecognitionOutcome(
            status=RecognitionStatus.FAILED,
            error=code,
            detail=detail,
        ))

    def _resolve(self, outcome: RecognitionOutcome) -> None:
        if self._outcome is None or self._outcome.done():
            return

        capture_was_live = self._capture_started
        self.state = SessionState.ENDED

        # Detach before abort so the platform's own error/end echo is dropped
        self._capability.clear_handlers()
        if capture_was_live and outcome.status is RecognitionStatus.FAILED:
            self._capability.abort()

        boot = self._boot_task
        if boot is not None and not boot.done() and boot is not asyncio.current_task():
            boot.cancel()

        self._microphone.release(self.session_id)
        self._outcome.set_result(outcome)

        self._log("recognition_session_ended", {
            "status": outcome.status.value,
            "error": outcome.error.value if outcome.error else None,
            "detail": outcome.detail,
            "final_chars": len(outcome.text),
        })

    def _notify(self, segment: str, *, is_final: bool) -> None:
        update = TranscriptUpdate(
            session_id=self.session_id,
            interim_text=self.interim_text,
            final_text=self.final_text,
            segment=segment,
            is_final=is_final,
        )
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log("recognition_listener_failed", {
                    "level": "ERROR",
                    "error": f"{type(exc).__name__}: {exc}",
                })

    def _log(self, event_type: str, fields: dict[str, object]) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "level": "DEBUG",
            "recognition_session_id": self.session_id,
            "state": self.state.value,
            **fields,
        })


# =============================================================================
# Recognizer
# =============================================================================

class Recognizer:
    """
    Factory for RecognitionSessions over a platform capability.

    start(...) -> RecognitionSession is the SessionHandle;
    stop(handle) drains it.

    Absence of a capability is a startup-time fatal condition.
    """

    def __init__(
        self,
        capability_factory: CapabilityFactory | None,
        *,
        microphone: Microphone,
        language: str = RECOGNITION_LANGUAGE_DEFAULT,
    ) -> None:
        if capability_factory is None:
            raise CapabilityUnavailableError("speech-to-text capability not available")
        self._factory = capability_factory
        self._microphone = microphone
        self._language = language

    @property
    def microphone(self) -> Microphone:
        return self._microphone

    def start(
        self,
        *,
        continuous: bool = True,
        interim_results: bool = True,
        on_update: TranscriptListener | None = None,
    ) -> RecognitionSession:
        """
        Create and start a session.

        Raises MicrophoneBusyError if the microphone is held.
        """
        capability = self._factory()
        capability.continuous = continuous
        capability.interim_results = interim_results
        capability.language = self._language

        session = RecognitionSession(capability, microphone=self._microphone)
        if on_update is not None:
            session.subscribe(on_update)
        return session.start()

    def stop(self, session: RecognitionSession) -> None:
        session.stop()
