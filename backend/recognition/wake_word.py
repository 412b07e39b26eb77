"""
Wake word detector.

Responsibilities:
- Run a continuous, final-only recognition session while dormant
- Match the activation phrase (case-insensitive substring) within each
  finalized utterance
- Restart itself after a natural end without a match
- Report hard errors once and stay down (no restart storm)

Non-responsibilities:
- Does NOT start the voice loop (the caller reacts to on_wake)
- Does NOT enforce the microphone handoff (the caller deactivates the
  detector before starting the loop and awaits the microphone release)
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from observability.logger import log_event
from orchestrator.errors import MicrophoneBusyError
from recognition.base import RecognitionStatus
from recognition.session import (
    RecognitionOutcome,
    RecognitionSession,
    Recognizer,
    TranscriptUpdate,
)
from constants import WAKE_PHRASE_DEFAULT, WAKE_RESTART_DELAY_MS


def _now_ms() -> int:
    return int(time.time() * 1000)


WakeHandler = Callable[[], None]
WakeErrorHandler = Callable[[RecognitionOutcome], None]


class WakeWordDetector:
    """
    Self-restarting low-duty listener for one activation phrase.

    Per activation:
    - on_wake fires at most once; the detector then goes dormant until
      activate() is called again.
    - A FAILED session outcome is reported once via the on_error slot
      (assignable by the owner) and the detector goes dormant (kill
      switch).
    """

    def __init__(
        self,
        recognizer: Recognizer,
        *,
        phrase: str = WAKE_PHRASE_DEFAULT,
        restart_delay_ms: int = WAKE_RESTART_DELAY_MS,
        on_error: WakeErrorHandler | None = None,
    ) -> None:
        phrase = phrase.strip().lower()
        if not phrase:
            raise ValueError("wake phrase must be non-empty")

        self._recognizer = recognizer
        self._phrase = phrase
        self._restart_delay_s = restart_delay_ms / 1000.0
        self.on_error: WakeErrorHandler | None = on_error

        self._on_wake: WakeHandler | None = None
        self._task: asyncio.Task[None] | None = None
        self._session: RecognitionSession | None = None
        self._active = False
        self._matched = False
        self._restarts = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def phrase(self) -> str:
        return self._phrase

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def activate(self, on_wake: WakeHandler) -> None:
        """Begin dormant listening. No-op if already active."""
        if self._active:
            return

        self._on_wake = on_wake
        self._active = True
        self._matched = False
        self._restarts = 0

        self._log("wake_word_activated", {})
        task = asyncio.create_task(self._run())
        self._task = task

        def _clear(done: asyncio.Task[None]) -> None:
            if self._task is done:
                self._task = None

        task.add_done_callback(_clear)

    def deactivate(self) -> None:
        """
        Stop listening immediately. Idempotent.

        The live session (if any) is aborted synchronously, so the
        microphone is free once this returns.
        """
        if not self._active and self._task is None:
            return

        self._active = False

        session = self._session
        if session is not None:
            session.abort()

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self._log("wake_word_deactivated", {})

    # ------------------------------------------------------------------
    # Restart loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while self._active:
            try:
                session = self._recognizer.start(
                    continuous=True,
                    interim_results=False,
                    on_update=self._on_update,
                )
            except MicrophoneBusyError as exc:
                self._active = False
                self._log("wake_word_failed", {
                    "level": "WARNING",
                    "error": str(exc),
                })
                return

            self._session = session
            try:
                outcome = await session.outcome()
            finally:
                if self._session is session:
                    self._session = None

            if self._matched:
                self._active = False
                self._fire_wake()
                return

            if not self._active:
                return

            if outcome.status is RecognitionStatus.FAILED:
                self._active = False
                self._report(outcome)
                return

            # Natural end without a match: platform session limit
            self._restarts += 1
            self._log("wake_word_restart", {
                "restarts": self._restarts,
                "status": outcome.status.value,
            })
            await asyncio.sleep(self._restart_delay_s)

    def _on_update(self, update: TranscriptUpdate) -> None:
        if not update.is_final or self._matched:
            return
        if self._phrase not in update.segment.lower():
            return

        self._matched = True
        self._log("wake_word_matched", {"segment": update.segment})

        # Match is decided; no need to drain the rest of the utterance
        session = self._session
        if session is not None:
            session.abort()

    def _fire_wake(self) -> None:
        on_wake = self._on_wake
        self._on_wake = None
        if on_wake is None:
            return
        try:
            on_wake()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("wake_word_handler_failed", {
                "level": "ERROR",
                "error": f"{type(exc).__name__}: {exc}",
            })

    def _report(self, outcome: RecognitionOutcome) -> None:
        self._log("wake_word_failed", {
            "level": "WARNING",
            "error": outcome.error.value if outcome.error else None,
            "detail": outcome.detail,
        })
        if self.on_error is None:
            return
        try:
            self.on_error(outcome)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log("wake_word_handler_failed", {
                "level": "ERROR",
                "error": f"{type(exc).__name__}: {exc}",
            })

    def _log(self, event_type: str, fields: dict[str, object]) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "level": "INFO",
            "phrase": self._phrase,
            **fields,
        })
