"""
Voice assistant: wake word detector + voice loop composition.

Owns the cooperative microphone handoff:
- Wake (or manual activation): deactivate the detector, wait for the
  microphone to be released, then start the loop.
- Loop reaches STOPPED: reactivate the detector, unless the loop died
  on PERMISSION_DENIED (the user must act; start() re-arms).

This is the only place the detector and the loop meet; neither knows
about the other. Subscribers see loop events plus WAKE_WORD_FAILED
when the detector goes down.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from audio.microphone import Microphone
from observability.logger import log_event
from orchestrator.controller import VoiceLoopController
from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.phase import LoopPhase
from orchestrator.events import (
    LoopEvent,
    LoopEventType,
    LoopListener,
    PhaseChanged,
    WakeWordFailed,
)
from recognition.base import RecognitionErrorCode
from recognition.session import RecognitionOutcome
from recognition.wake_word import WakeWordDetector


def _now_ms() -> int:
    return int(time.time() * 1000)


class VoiceAssistant:
    """Top-level command surface used by the server and CLI."""

    def __init__(
        self,
        *,
        controller: VoiceLoopController,
        microphone: Microphone,
        detector: WakeWordDetector | None = None,
    ) -> None:
        self._controller = controller
        self._microphone = microphone
        self._detector = detector

        self._running = False
        self._handoff: asyncio.Task[None] | None = None
        self._rearm: asyncio.Task[None] | None = None
        self._listeners: list[LoopListener] = []
        self._wake_error: str | None = None

        controller.subscribe(self._on_loop_event)
        if detector is not None:
            detector.on_error = self._on_wake_error

    @property
    def controller(self) -> VoiceLoopController:
        return self._controller

    @property
    def detector(self) -> WakeWordDetector | None:
        return self._detector

    @property
    def running(self) -> bool:
        return self._running

    def snapshot(self) -> dict[str, object]:
        return {
            **self._controller.snapshot(),
            "wake_word_enabled": self._detector is not None,
            "wake_word_listening": bool(self._detector and self._detector.active),
            "wake_word_error": self._wake_error,
        }

    def subscribe(self, listener: LoopListener) -> Callable[[], None]:
        """Loop events plus wake word failures. Returns an unsubscribe callable."""
        self._listeners.append(listener)
        unsubscribe_loop = self._controller.subscribe(listener)

        def _unsubscribe() -> None:
            unsubscribe_loop()
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin dormant wake listening (or the loop directly without one)."""
        self._running = True
        self._wake_error = None
        self._log("assistant_started", {"wake_word": self._detector is not None})

        if self._controller.active:
            return

        if self._detector is None:
            self._controller.start()
            return

        self._detector.activate(self._on_wake)

    def activate_loop(self) -> None:
        """Manual loop start (e.g. a UI button) with the same handoff."""
        self._running = True
        self._begin_handoff(trigger="manual")

    def stop_loop(self) -> None:
        self._controller.stop()

    async def shutdown(self) -> None:
        """Stop everything and wait for the loop task to finish."""
        self._running = False

        for task in (self._handoff, self._rearm):
            if task is not None and not task.done():
                task.cancel()

        if self._detector is not None:
            self._detector.deactivate()

        self._controller.stop()
        await self._controller.wait_stopped()
        self._log("assistant_shutdown", {})

    # ------------------------------------------------------------------
    # Handoff
    # ------------------------------------------------------------------

    def _on_wake(self) -> None:
        self._begin_handoff(trigger="wake_word")

    def _begin_handoff(self, *, trigger: str) -> None:
        if self._controller.active:
            return
        if self._handoff is not None and not self._handoff.done():
            return
        self._handoff = asyncio.create_task(self._handoff_to_loop(trigger))

    async def _handoff_to_loop(self, trigger: str) -> None:
        if self._detector is not None:
            self._detector.deactivate()

        await self._microphone.wait_released()
        if not self._running:
            return

        self._log("assistant_handoff_to_loop", {"trigger": trigger})
        self._controller.start()

    def _on_loop_event(self, event: LoopEvent) -> None:
        if not isinstance(event, PhaseChanged) or event.phase is not LoopPhase.STOPPED:
            return

        if not self._running or self._detector is None:
            return

        if self._controller.last_fatal is ErrorKind.PERMISSION_DENIED:
            self._log("assistant_dormant", {"reason": ErrorKind.PERMISSION_DENIED.value})
            return

        if self._rearm is None or self._rearm.done():
            self._rearm = asyncio.create_task(self._rearm_detector())

    def _on_wake_error(self, outcome: RecognitionOutcome) -> None:
        kind = (
            ErrorKind.PERMISSION_DENIED
            if outcome.error is RecognitionErrorCode.PERMISSION_DENIED
            else ErrorKind.RECOGNITION_TRANSIENT
        )
        code = outcome.error.value if outcome.error else RecognitionErrorCode.UNKNOWN.value
        message = f"{code}: {outcome.detail}" if outcome.detail else code
        self._wake_error = message

        self._log("assistant_wake_word_down", {"level": "WARNING", "kind": kind.value, "error": message})
        event = WakeWordFailed(
            event_type=LoopEventType.WAKE_WORD_FAILED,
            ts_ms=_now_ms(),
            kind=kind,
            message=message,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log("assistant_listener_failed", {
                    "level": "ERROR",
                    "error": f"{type(exc).__name__}: {exc}",
                })

    async def _rearm_detector(self) -> None:
        await self._microphone.wait_released()
        if not self._running or self._controller.active or self._detector is None:
            return

        self._log("assistant_handoff_to_wake_word", {})
        self._detector.activate(self._on_wake)

    def _log(self, event_type: str, fields: dict[str, object]) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "level": "INFO",
            **fields,
        })
