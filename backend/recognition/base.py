"""
Platform speech-to-text capability contract.

This module defines the *interface only*. It mirrors the platform
recognizer model: a configurable object with start/stop/abort commands
and event handler slots. No promise/await semantics are offered here;
the bridging into awaitable outcomes lives in recognition.session.

Key invariants:
- Handlers are plain callables invoked on the event loop thread.
- After on_end fires, the capability emits nothing further until the
  next start().
- Error codes use the platform vocabulary (constants.PLATFORM_ERROR_*).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from constants import RECOGNITION_LANGUAGE_DEFAULT


# =============================================================================
# Result / state types
# =============================================================================

@dataclass(frozen=True)
class RecognitionResult:
    """One hypothesis segment delivered by the platform."""
    transcript: str
    is_final: bool


class SessionState(str, Enum):
    """Lifecycle of one RecognitionSession."""

    IDLE = "IDLE"
    STARTING = "STARTING"
    LISTENING = "LISTENING"
    STOPPING = "STOPPING"
    ENDED = "ENDED"


class RecognitionErrorCode(str, Enum):
    """Session-level classification of hard recognition errors."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    NETWORK = "NETWORK"
    ABORTED = "ABORTED"
    UNKNOWN = "UNKNOWN"


class RecognitionStatus(str, Enum):
    """Terminal outcome class of a RecognitionSession."""

    TRANSCRIBED = "TRANSCRIBED"
    NO_SPEECH = "NO_SPEECH"
    FAILED = "FAILED"


StartHandler = Callable[[], None]
ResultHandler = Callable[[Sequence[RecognitionResult]], None]
ErrorHandler = Callable[[str], None]
EndHandler = Callable[[], None]


def _noop(*_args: object) -> None:
    return None


# =============================================================================
# Capability
# =============================================================================

class SpeechCapability(ABC):
    """
    Abstract platform speech recognizer.

    Configuration (set before start()):
    - continuous: keep capturing across utterances until stop/limit
    - interim_results: deliver non-final hypotheses
    - language: BCP-47 tag

    Event handler slots (assigned by the owner):
    - on_start(): capture began (first audio activity)
    - on_result(results): one or more hypothesis segments
    - on_error(code): platform error code; on_end follows
    - on_end(): the capture session is over

    Implementations are responsible for:
    - Honoring stop() as a graceful drain (flush pending finals, then end)
    - Honoring abort() as immediate termination (error "aborted", then end)

    Non-responsibilities:
    - No accumulation of transcripts
    - No retry / restart policy
    - No microphone arbitration
    """

    def __init__(
        self,
        *,
        continuous: bool = True,
        interim_results: bool = True,
        language: str = RECOGNITION_LANGUAGE_DEFAULT,
    ) -> None:
        self.continuous = continuous
        self.interim_results = interim_results
        self.language = language

        self.on_start: StartHandler = _noop
        self.on_result: ResultHandler = _noop
        self.on_error: ErrorHandler = _noop
        self.on_end: EndHandler = _noop

    def clear_handlers(self) -> None:
        """Detach all handlers (events after this are dropped)."""
        self.on_start = _noop
        self.on_result = _noop
        self.on_error = _noop
        self.on_end = _noop

    @abstractmethod
    async def request_permission(self) -> bool:
        """
        Ask the platform for microphone access.

        Returns False if access is refused or no input device exists.
        """
        raise NotImplementedError

    @abstractmethod
    def start(self) -> None:
        """
        Begin capture. Returns immediately; on_start fires asynchronously.

        Raises RuntimeError if the capability is already running.
        """
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """
        Graceful stop: deliver pending final results, then fire on_end.

        Idempotent; no-op if not running.
        """
        raise NotImplementedError

    @abstractmethod
    def abort(self) -> None:
        """
        Immediate stop: fire on_error("aborted"), then on_end.

        Idempotent; no-op if not running.
        """
        raise NotImplementedError


CapabilityFactory = Callable[[], SpeechCapability]
