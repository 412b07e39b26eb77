"""
Authoritative loop state containers.

Rules:
- These dataclasses are pure data models.
- The controller replaces them wholesale (dataclasses.replace); nobody
  mutates them in place.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from orchestrator.enums.phase import LoopPhase
from orchestrator.retry import RetryAttempt, reset_attempt


# =============================================================================
# Turn
# =============================================================================

@dataclass(frozen=True)
class Turn:
    """
    One Listen -> Think -> Speak cycle.

    Exactly one Turn exists inside an active loop; it is never persisted
    and never carried across iterations.
    """
    turn_id: int
    phase: LoopPhase
    started_at_ms: int
    user_text: str = ""
    assistant_text: str = ""


# =============================================================================
# Loop State
# =============================================================================

@dataclass(frozen=True)
class LoopState:
    """Immutable snapshot of all controller-owned state."""

    phase: LoopPhase = LoopPhase.IDLE

    # Authoritative cancellation flag: cleared by stop(), checked at
    # every phase boundary.
    active: bool = False

    turn: Turn | None = None

    # Consecutive transient recognition failures (backoff index)
    recognition_retry: RetryAttempt = field(default_factory=reset_attempt)

    completed_turns: int = 0
