"""
Offline speech output (fallback, local engine).

pyttsx3 drives the platform speech engine (SAPI5 / NSSpeechSynthesizer /
espeak). runAndWait() blocks, so utterances run on one dedicated worker
thread that owns a single engine for the lifetime of the output.
Utterances are serialized there; a halted utterance finishes its run
loop before the next one starts. Completion hops back to the event loop
through the executor future.
"""

from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

import pyttsx3

from observability.logger import log_event
from synthesis.base import CompleteHandler, PlaybackErrorHandler, SpeechOutput


EngineFactory = Callable[[], Any]


class OfflineSpeechOutput(SpeechOutput):
    """pyttsx3-backed output; halt() revokes the in-progress utterance."""

    name = "offline"

    def __init__(
        self,
        *,
        rate: int | None = None,
        engine_factory: EngineFactory = pyttsx3.init,
    ) -> None:
        self._rate = rate
        self._engine_factory = engine_factory
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="offline-tts")

        # Guards _generation and _speaking across the loop and worker threads
        self._lock = threading.Lock()
        self._engine: Any = None
        self._generation = 0
        self._speaking = False

    async def begin(
        self,
        text: str,
        *,
        on_complete: CompleteHandler,
        on_error: PlaybackErrorHandler,
    ) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation

        loop = asyncio.get_running_loop()
        utterance = loop.run_in_executor(self._worker, self._speak_blocking, text, generation)

        def _done(fut: asyncio.Future[bool]) -> None:
            if fut.cancelled() or generation != self._generation:
                return

            exc = fut.exception()
            if exc is not None:
                log_event({
                    "ts_ms": self._now_ms(),
                    "event_type": "offline_engine_failed",
                    "level": "WARNING",
                    "error": f"{type(exc).__name__}: {exc}",
                })
                on_error(f"engine: {type(exc).__name__}: {exc}")
                return

            if fut.result():
                on_complete()
            else:
                on_error("engine: utterance interrupted")

        utterance.add_done_callback(_done)

    def halt(self) -> None:
        with self._lock:
            self._generation += 1
            speaking = self._speaking
        if speaking:
            self._engine.stop()

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def _speak_blocking(self, text: str, generation: int) -> bool:
        """Speak one utterance; returns the engine's completed flag."""
        engine = self._ensure_engine()
        completed = {"value": True}

        def _on_finished(name: str, completed_flag: bool) -> None:  # pylint: disable=unused-argument
            completed["value"] = bool(completed_flag)

        with self._lock:
            if generation != self._generation:
                # Halted or superseded while queued
                return False
            self._speaking = True

        token = engine.connect("finished-utterance", _on_finished)
        try:
            engine.say(text)
            engine.runAndWait()
        finally:
            with self._lock:
                self._speaking = False
            engine.disconnect(token)

        return completed["value"]

    def _ensure_engine(self) -> Any:
        if self._engine is None:
            engine = self._engine_factory()
            if self._rate is not None:
                engine.setProperty("rate", self._rate)
            self._engine = engine
        return self._engine

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)
