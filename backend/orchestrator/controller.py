"""
Voice loop controller: the Listen -> Think -> Speak state machine.

Responsibilities:
- Own LoopState (phase, active flag, current Turn) for one loop
- Sequence exactly one phase-operation at a time:
    Listen  -> RecognitionSession outcome
    Think   -> AIResponder reply
    Speak   -> SynthesisChain outcome
- Classify failures and apply the recovery policy per ErrorKind
- Honor stop() out-of-band in every phase
- Notify subscribers (phase changes, utterances, classified errors)

Non-responsibilities:
- No wake word handling (session.assistant composes that)
- No history persistence (subscribers own that)
- No responder timeouts (the responder owns them)

Rules:
- `active` is checked before each of Listen / Think / Speak.
- Results that arrive after stop() are discarded, never acted on.
- Non-fatal errors are absorbed here; only PERMISSION_DENIED,
  MICROPHONE_BUSY and INTERNAL end the loop.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import replace
from typing import Any, Callable

from observability.logger import log_event
from observability.metrics import timed
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.phase import LoopPhase
from orchestrator.errors import MicrophoneBusyError, ResponderError
from orchestrator.events import (
    AssistantUtterance,
    InterimTranscript,
    LoopError,
    LoopEvent,
    LoopEventType,
    LoopListener,
    PhaseChanged,
    UserUtterance,
    event_to_dict,
)
from orchestrator.retry import get_retry_delay_ms, next_attempt, reset_attempt
from orchestrator.state_dataclass import LoopState, Turn
from recognition.base import RecognitionErrorCode, RecognitionStatus
from recognition.session import RecognitionSession, Recognizer, TranscriptUpdate
from responder.base import AIResponder
from synthesis.chain import SynthesisChain, SynthesisOutcome
from constants import STOP_PHRASE_DEFAULT


def _now_ms() -> int:
    return int(time.time() * 1000)


_TURN_PHASES = (LoopPhase.LISTENING, LoopPhase.THINKING, LoopPhase.SPEAKING)


class VoiceLoopController:
    """
    Single owner of all loop mutable state.

    Public surface: start(), stop(), subscribe(), wait_stopped() and
    read-only state snapshots. Everything else runs on the loop task.
    """

    def __init__(
        self,
        *,
        recognizer: Recognizer,
        responder: AIResponder,
        synthesis: SynthesisChain,
        conversation_context: Any = None,
        stop_phrase: str | None = STOP_PHRASE_DEFAULT,
        loop_id: str | None = None,
    ) -> None:
        self.loop_id = loop_id or f"loop_{uuid.uuid4().hex[:8]}"

        self._recognizer = recognizer
        self._responder = responder
        self._synthesis = synthesis
        self._context = conversation_context
        self._stop_phrase = (stop_phrase or "").strip().lower()

        self._state = LoopState()
        self._listeners: list[LoopListener] = []

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._session: RecognitionSession | None = None

        self._turn_counter = 0
        self._last_fatal: ErrorKind | None = None

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def phase(self) -> LoopPhase:
        return self._state.phase

    @property
    def active(self) -> bool:
        return self._state.active

    @property
    def last_fatal(self) -> ErrorKind | None:
        """ErrorKind of the fatal error that ended the last run, if any."""
        return self._last_fatal

    def snapshot(self) -> dict[str, Any]:
        turn = self._state.turn
        return {
            "loop_id": self.loop_id,
            "phase": self._state.phase.value,
            "active": self._state.active,
            "turn_id": turn.turn_id if turn else None,
            "completed_turns": self._state.completed_turns,
            "last_fatal": self._last_fatal.value if self._last_fatal else None,
        }

    def subscribe(self, listener: LoopListener) -> Callable[[], None]:
        """Register a loop event listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Begin iterating. No-op if already active.

        Idle/Stopped -> Listening happens synchronously; the first
        recognition session starts on the loop task.
        """
        if self._state.active:
            return

        previous = self._task
        self._last_fatal = None
        self._stop_event = asyncio.Event()
        self._state = replace(
            self._state,
            active=True,
            recognition_retry=reset_attempt(),
        )
        self._log("loop_started", {})

        self._begin_turn()
        self._task = asyncio.create_task(self._run(previous))

    def stop(self) -> None:
        """
        Stop the loop. Idempotent.

        Listen: the live session is aborted. Speak: synthesis is
        cancelled. Think: the in-flight reply is discarded on arrival.
        """
        if not self._state.active:
            return

        self._state = replace(self._state, active=False)
        self._transition(LoopPhase.STOPPING)

        self._stop_event.set()

        session = self._session
        if session is not None:
            session.abort()

        self._synthesis.cancel()

    async def wait_stopped(self) -> None:
        """Wait until the loop task has reached STOPPED."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Loop task
    # ------------------------------------------------------------------

    async def _run(self, previous: asyncio.Task[None] | None) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        try:
            first = True
            while self._live():
                delay_ms = get_retry_delay_ms(self._state.recognition_retry)
                if delay_ms:
                    await self._wait_unless_stopped(delay_ms / 1000.0)
                    if not self._live():
                        break

                if not first:
                    self._begin_turn()
                first = False

                user_text = await self._listen()
                if user_text is None or not self._live():
                    continue

                if self._is_stop_command(user_text):
                    self._log("loop_stop_phrase_heard", {"turn_id": self._turn_id()})
                    self.stop()
                    break

                self._set_turn(user_text=user_text)
                self._emit(UserUtterance(
                    event_type=LoopEventType.USER_UTTERANCE,
                    ts_ms=_now_ms(),
                    turn_id=self._turn_id(),
                    text=user_text,
                ))

                if not self._live():
                    break
                reply = await self._think(user_text)
                if reply is None or not self._live():
                    continue

                await self._speak(reply)

        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("loop_internal_error", {
                "level": "ERROR",
                "error": f"{type(exc).__name__}: {exc}",
            })
            self._fail_fatal(ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}")

        finally:
            self._teardown()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _listen(self) -> str | None:
        """Returns the transcribed text, or None if this turn ends here."""
        turn_id = self._turn_id()

        with timed(
            "listen_phase",
            loop_id=self.loop_id,
            phase=LoopPhase.LISTENING.value,
            details={"turn_id": turn_id},
        ) as tags:
            try:
                session = self._recognizer.start(
                    continuous=False,
                    interim_results=True,
                    on_update=self._on_transcript,
                )
            except MicrophoneBusyError as exc:
                tags["outcome"] = "microphone_busy"
                self._fail_fatal(ErrorKind.MICROPHONE_BUSY, str(exc))
                return None

            self._session = session
            try:
                outcome = await session.outcome()
            finally:
                if self._session is session:
                    self._session = None

            tags["outcome"] = outcome.status.value

        if not self._live():
            return None

        if outcome.status is RecognitionStatus.TRANSCRIBED:
            self._state = replace(self._state, recognition_retry=reset_attempt())
            return outcome.text

        if outcome.status is RecognitionStatus.NO_SPEECH:
            self._state = replace(self._state, recognition_retry=reset_attempt())
            self._notify_error(ErrorKind.NO_SPEECH_DETECTED, outcome.detail or "no_speech")
            return None

        if outcome.error is RecognitionErrorCode.PERMISSION_DENIED:
            self._fail_fatal(ErrorKind.PERMISSION_DENIED, outcome.detail or "permission denied")
            return None

        self._state = replace(
            self._state,
            recognition_retry=next_attempt(self._state.recognition_retry),
        )
        code = outcome.error.value if outcome.error else RecognitionErrorCode.UNKNOWN.value
        self._notify_error(
            ErrorKind.RECOGNITION_TRANSIENT,
            f"{code}: {outcome.detail}" if outcome.detail else code,
        )
        return None

    async def _think(self, user_text: str) -> str | None:
        """Returns the assistant text, or None if Speak is skipped."""
        self._transition(LoopPhase.THINKING)
        turn_id = self._turn_id()

        with timed(
            "think_phase",
            loop_id=self.loop_id,
            phase=LoopPhase.THINKING.value,
            details={"turn_id": turn_id},
        ) as tags:
            request = asyncio.ensure_future(self._responder.respond(user_text, self._context))
            stopped = asyncio.ensure_future(self._stop_event.wait())
            try:
                await asyncio.wait({request, stopped}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                request.add_done_callback(self._discard_reply)
                raise
            finally:
                stopped.cancel()

            if not request.done() or not self._live():
                # Thinking is not aborted; its result is dropped on arrival
                tags["outcome"] = "discarded"
                request.add_done_callback(self._discard_reply)
                return None

            try:
                reply = request.result()
            except ResponderError as exc:
                tags["outcome"] = "failed"
                self._notify_error(ErrorKind.AI_RESPONDER_FAILURE, exc.reason)
                return None
            except Exception as exc:  # pylint: disable=broad-exception-caught
                tags["outcome"] = "failed"
                self._notify_error(
                    ErrorKind.AI_RESPONDER_FAILURE,
                    f"{type(exc).__name__}: {exc}",
                )
                return None

            text = (reply.text or "").strip()
            if not text:
                tags["outcome"] = "failed"
                self._notify_error(ErrorKind.AI_RESPONDER_FAILURE, "empty response")
                return None

            tags["outcome"] = "replied"

        self._set_turn(assistant_text=text)
        self._emit(AssistantUtterance(
            event_type=LoopEventType.ASSISTANT_UTTERANCE,
            ts_ms=_now_ms(),
            turn_id=turn_id,
            text=text,
        ))
        return text

    async def _speak(self, text: str) -> None:
        self._transition(LoopPhase.SPEAKING)

        with timed(
            "speak_phase",
            loop_id=self.loop_id,
            phase=LoopPhase.SPEAKING.value,
            details={"turn_id": self._turn_id()},
        ) as tags:
            outcome = await self._synthesis.speak(text)
            tags["outcome"] = outcome.value

        if outcome is SynthesisOutcome.CANCELLED:
            return

        self._state = replace(
            self._state,
            completed_turns=self._state.completed_turns + 1,
        )
        if outcome is SynthesisOutcome.FAILED and self._live():
            self._notify_error(ErrorKind.SYNTHESIS_FAILURE, "all synthesis providers failed")

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_transcript(self, update: TranscriptUpdate) -> None:
        if not self._state.active or self._state.phase is not LoopPhase.LISTENING:
            return

        text = f"{update.final_text} {update.interim_text}".strip()
        if not text:
            return

        self._emit(InterimTranscript(
            event_type=LoopEventType.INTERIM_TRANSCRIPT,
            ts_ms=_now_ms(),
            turn_id=self._turn_id(),
            text=text,
        ))

    def _discard_reply(self, fut: asyncio.Future[Any]) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        self._log("loop_reply_discarded", {
            "level": "DEBUG",
            "error": f"{type(exc).__name__}: {exc}" if exc else None,
        })

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _begin_turn(self) -> None:
        self._turn_counter += 1
        self._state = replace(
            self._state,
            turn=Turn(
                turn_id=self._turn_counter,
                phase=LoopPhase.LISTENING,
                started_at_ms=_now_ms(),
            ),
        )
        self._transition(LoopPhase.LISTENING)

    def _live(self) -> bool:
        """True while this run is active and not superseded by a newer start()."""
        return self._state.active and self._task is asyncio.current_task()

    def _turn_id(self) -> int | None:
        turn = self._state.turn
        return turn.turn_id if turn else None

    def _set_turn(self, **changes: Any) -> None:
        turn = self._state.turn
        if turn is None:
            return
        self._state = replace(self._state, turn=replace(turn, **changes))

    def _transition(self, phase: LoopPhase) -> None:
        previous = self._state.phase
        if phase is previous and phase not in _TURN_PHASES:
            return

        turn = self._state.turn
        if turn is not None and phase in _TURN_PHASES:
            turn = replace(turn, phase=phase)
        self._state = replace(self._state, phase=phase, turn=turn)

        self._emit(PhaseChanged(
            event_type=LoopEventType.PHASE_CHANGED,
            ts_ms=_now_ms(),
            phase=phase,
            previous=previous,
            turn_id=turn.turn_id if turn else None,
        ))

    def _is_stop_command(self, text: str) -> bool:
        return bool(self._stop_phrase) and self._stop_phrase in text.lower()

    async def _wait_unless_stopped(self, delay_s: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_s)
        except asyncio.TimeoutError:
            pass

    def _fail_fatal(self, kind: ErrorKind, message: str) -> None:
        self._last_fatal = kind
        self._state = replace(self._state, active=False)
        self._notify_error(kind, message, fatal=True)

    def _teardown(self) -> None:
        if self._task is not asyncio.current_task():
            # Superseded by a newer start(); that run owns the state now
            return

        session = self._session
        self._session = None
        if session is not None:
            session.abort()

        self._synthesis.cancel()

        self._state = replace(self._state, active=False, turn=None)
        self._transition(LoopPhase.STOPPED)
        self._log("loop_stopped", {
            "completed_turns": self._state.completed_turns,
            "last_fatal": self._last_fatal.value if self._last_fatal else None,
        })

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def _notify_error(self, kind: ErrorKind, message: str, *, fatal: bool = False) -> None:
        self._emit(LoopError(
            event_type=LoopEventType.ERROR,
            ts_ms=_now_ms(),
            kind=kind,
            message=message,
            fatal=fatal,
            turn_id=self._turn_id(),
        ))

    def _emit(self, event: LoopEvent) -> None:
        fields = event_to_dict(event)
        event_kind = str(fields.pop("event_type")).lower()
        ts_ms = fields.pop("ts_ms")

        if event.event_type is LoopEventType.INTERIM_TRANSCRIPT:
            level = "DEBUG"
        elif isinstance(event, LoopError):
            level = "ERROR" if event.fatal else "WARNING"
        else:
            level = "INFO"

        log_event({
            "ts_ms": ts_ms,
            "event_type": f"loop_{event_kind}",
            "level": level,
            "loop_id": self.loop_id,
            **fields,
        })

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log("loop_listener_failed", {
                    "level": "ERROR",
                    "error": f"{type(exc).__name__}: {exc}",
                })

    def _log(self, event_type: str, fields: dict[str, Any]) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "level": "INFO",
            "loop_id": self.loop_id,
            "phase": self._state.phase.value,
            **fields,
        })
