"""
Synthesis chain: primary provider with a single local fallback.

Responsibilities:
- Own the single audio output slot (one SynthesisJob at a time)
- Try the primary provider, then the fallback exactly once on failure
- Resolve every speak() with COMPLETED / FAILED / CANCELLED, never hang

Rules:
- COMPLETED resolves only after playback reached the end.
- A new speak() cancels the prior job; it never queues.
- cancel() halts output and resolves the pending speak() synchronously.
- A fallback failure is terminal for the job; the primary is never retried.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from observability.logger import log_event
from orchestrator.errors import SynthesisProviderError
from synthesis.base import SpeechOutput


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Types
# =============================================================================

class SynthesisOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ProviderRole(str, Enum):
    PRIMARY = "PRIMARY"
    FALLBACK = "FALLBACK"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PLAYING = "PLAYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class SynthesisJob:
    """Mutable bookkeeping for the one active speak() call."""
    job_id: str
    text: str
    provider: ProviderRole = ProviderRole.PRIMARY
    status: JobStatus = JobStatus.PENDING
    failures: list[str] = field(default_factory=list)


# =============================================================================
# Chain
# =============================================================================

class SynthesisChain:
    """
    Cancellable speak() over a primary and an optional fallback output.
    """

    def __init__(
        self,
        primary: SpeechOutput,
        fallback: SpeechOutput | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback

        self._job: SynthesisJob | None = None
        self._result: asyncio.Future[SynthesisOutcome] | None = None
        self._driver: asyncio.Task[None] | None = None
        self._active_output: SpeechOutput | None = None

    @property
    def current_job(self) -> SynthesisJob | None:
        return self._job

    @property
    def busy(self) -> bool:
        return self._result is not None and not self._result.done()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def speak(self, text: str) -> SynthesisOutcome:
        """
        Render text audibly and wait until playback finished.

        Cancelling the awaiting task cancels the job.
        """
        self.cancel()

        if not text.strip():
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "synthesis_skipped_empty",
                "level": "DEBUG",
            })
            return SynthesisOutcome.COMPLETED

        job = SynthesisJob(job_id=f"syn_{uuid.uuid4().hex[:8]}", text=text)
        result: asyncio.Future[SynthesisOutcome] = asyncio.get_running_loop().create_future()

        self._job = job
        self._result = result
        self._driver = asyncio.create_task(self._drive(job, result))

        self._log(job, "synthesis_started", {"chars": len(text)})

        try:
            return await asyncio.shield(result)
        except asyncio.CancelledError:
            if self._job is job:
                self.cancel()
            raise

    def cancel(self) -> None:
        """
        Halt whichever provider is producing output and resolve the
        pending speak() with CANCELLED. Idempotent.
        """
        job = self._job
        result = self._result
        if job is None or result is None or result.done():
            return

        output = self._active_output
        if output is not None:
            output.halt()

        job.status = JobStatus.CANCELLED
        result.set_result(SynthesisOutcome.CANCELLED)

        driver = self._driver
        if driver is not None and not driver.done():
            driver.cancel()

        self._release(job)
        self._log(job, "synthesis_cancelled", {"provider": job.provider.value})

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def _drive(
        self,
        job: SynthesisJob,
        result: asyncio.Future[SynthesisOutcome],
    ) -> None:
        attempts: list[tuple[ProviderRole, SpeechOutput]] = [
            (ProviderRole.PRIMARY, self._primary),
        ]
        if self._fallback is not None:
            attempts.append((ProviderRole.FALLBACK, self._fallback))

        for role, output in attempts:
            job.provider = role
            job.status = JobStatus.PENDING
            self._active_output = output

            if role is ProviderRole.FALLBACK:
                self._log(job, "synthesis_fallback_started", {"output": output.name})

            try:
                await self._attempt(job, output)
            except SynthesisProviderError as exc:
                output.halt()
                job.failures.append(f"{output.name}: {exc}")
                self._log(job, f"synthesis_{role.value.lower()}_failed", {
                    "level": "WARNING",
                    "output": output.name,
                    "reason": exc.reason,
                    "detail": exc.detail,
                })
                continue

            job.status = JobStatus.COMPLETED
            self._finish(job, result, SynthesisOutcome.COMPLETED)
            return

        job.status = JobStatus.FAILED
        self._finish(job, result, SynthesisOutcome.FAILED)

    async def _attempt(self, job: SynthesisJob, output: SpeechOutput) -> None:
        played: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _on_complete() -> None:
            if not played.done():
                played.set_result(None)

        def _on_error(reason: str) -> None:
            if not played.done():
                played.set_exception(SynthesisProviderError("playback", reason))

        try:
            await output.begin(job.text, on_complete=_on_complete, on_error=_on_error)
        except SynthesisProviderError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise SynthesisProviderError("engine", f"{type(exc).__name__}: {exc}") from exc

        if not played.done():
            job.status = JobStatus.PLAYING
        await played

    def _finish(
        self,
        job: SynthesisJob,
        result: asyncio.Future[SynthesisOutcome],
        outcome: SynthesisOutcome,
    ) -> None:
        if result.done():
            return
        result.set_result(outcome)
        self._release(job)
        self._log(job, "synthesis_finished", {
            "level": "INFO" if outcome is SynthesisOutcome.COMPLETED else "WARNING",
            "outcome": outcome.value,
            "provider": job.provider.value,
            "failures": list(job.failures),
        })

    def _release(self, job: SynthesisJob) -> None:
        if self._job is job:
            self._active_output = None

    def _log(self, job: SynthesisJob, event_type: str, fields: dict[str, object]) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": event_type,
            "level": "INFO",
            "job_id": job.job_id,
            **fields,
        })
