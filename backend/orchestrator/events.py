"""
Loop event definitions (notification surface).

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- Subscribers (UI, history, logging) consume these; they never feed
  back into the controller.
- Cancellation is not an event; a stop shows up as PHASE_CHANGED to
  STOPPING/STOPPED.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable

from orchestrator.enums.error_kind import ErrorKind
from orchestrator.enums.phase import LoopPhase


# =============================================================================
# Event Type Enumeration
# =============================================================================

class LoopEventType(str, Enum):
    """Canonical loop event types."""

    PHASE_CHANGED = "PHASE_CHANGED"
    INTERIM_TRANSCRIPT = "INTERIM_TRANSCRIPT"
    USER_UTTERANCE = "USER_UTTERANCE"
    ASSISTANT_UTTERANCE = "ASSISTANT_UTTERANCE"
    ERROR = "ERROR"
    WAKE_WORD_FAILED = "WAKE_WORD_FAILED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class LoopEvent:
    """Base class for all loop events."""
    event_type: LoopEventType
    ts_ms: int


# =============================================================================
# Concrete Events
# =============================================================================

@dataclass(frozen=True)
class PhaseChanged(LoopEvent):
    """The loop moved from one phase to another."""
    phase: LoopPhase
    previous: LoopPhase
    turn_id: int | None = None


@dataclass(frozen=True)
class InterimTranscript(LoopEvent):
    """Live partial text while Listening (UI only, never persisted)."""
    turn_id: int
    text: str


@dataclass(frozen=True)
class UserUtterance(LoopEvent):
    """Finalized user utterance for a turn."""
    turn_id: int
    text: str


@dataclass(frozen=True)
class AssistantUtterance(LoopEvent):
    """Finalized assistant reply for a turn (emitted before Speaking)."""
    turn_id: int
    text: str


@dataclass(frozen=True)
class LoopError(LoopEvent):
    """
    Classified error.

    fatal=True means the loop is tearing down to STOPPED because of it.
    """
    kind: ErrorKind
    message: str
    fatal: bool = False
    turn_id: int | None = None


@dataclass(frozen=True)
class WakeWordFailed(LoopEvent):
    """
    The wake word detector went down after a hard recognition error.

    It stays down until the assistant is started again.
    """
    kind: ErrorKind
    message: str


LoopListener = Callable[[LoopEvent], None]


def event_to_dict(event: LoopEvent) -> dict[str, Any]:
    """JSON-ready representation (enum members flattened to values)."""
    out: dict[str, Any] = {}
    for key, value in asdict(event).items():
        out[key] = value.value if isinstance(value, Enum) else value
    return out
