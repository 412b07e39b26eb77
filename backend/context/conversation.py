"""
Conversation context management.

Responsibilities:
- Store ordered user/assistant turns
- Enforce truncation rules:
  - Max 8 turns OR max 6,000 characters (whichever is hit first)
  - Drop oldest turns until constraints are satisfied
  - Allow a single oversized turn (with warning)
- Provide a serializable representation for responder consumption
- Record finalized loop utterances as committed user/assistant pairs

Non-responsibilities:
- No loop decisions
- No prompt construction (the responder adds its system prompt)
- No persistence beyond process memory
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Literal

from observability.logger import log_event
from orchestrator.events import AssistantUtterance, LoopEvent, UserUtterance
from constants import MAX_CONTEXT_CHARS, MAX_CONTEXT_TURNS


Role = Literal["user", "assistant"]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ContextTurn:
    """Single conversation turn."""
    role: Role
    text: str
    turn_id: int


class ConversationContext:
    """
    Mutable conversation context shared by the recorder and the responder.

    This object is intentionally imperative:
    - The recorder decides *when* to add turns
    - This class decides *what to keep*

    Invariants:
    - Turns are stored in chronological order
    - turn_id is monotonic but not required to be contiguous
    """

    def __init__(self, loop_id: str | None = None) -> None:
        self._loop_id = loop_id
        self._turns: list[ContextTurn] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def turns(self) -> tuple[ContextTurn, ...]:
        return tuple(self._turns)

    def add_user_turn(self, text: str, turn_id: int) -> None:
        """Add a user turn and enforce truncation rules."""
        self._turns.append(ContextTurn(role="user", text=text, turn_id=turn_id))
        self._truncate()

    def add_assistant_turn(self, text: str, turn_id: int) -> None:
        """Add an assistant turn and enforce truncation rules."""
        self._turns.append(ContextTurn(role="assistant", text=text, turn_id=turn_id))
        self._truncate()

    def clear(self) -> None:
        self._turns.clear()

    def serialize(self) -> list[dict[str, str]]:
        """
        Serialize turns into a role/content structure.

        Output format:
        [
          {"role": "user", "content": "..."},
          {"role": "assistant", "content": "..."},
        ]
        """
        return [
            {"role": t.role, "content": t.text}
            for t in self._turns
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _truncate(self) -> None:
        """
        Enforce context size limits.

        Rules:
        - Max 8 turns OR max 6,000 characters
        - Drop oldest turns until valid
        - Allow a single oversized turn (log warning)
        """
        while self._violates_limits():
            # If only one turn remains, allow it even if oversized
            if len(self._turns) == 1:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "context_single_turn_oversized",
                    "level": "WARNING",
                    "loop_id": self._loop_id,
                    "turn_id": self._turns[0].turn_id,
                    "char_count": len(self._turns[0].text),
                })
                break

            dropped = self._turns.pop(0)
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "context_turn_dropped",
                "level": "DEBUG",
                "loop_id": self._loop_id,
                "turn_id": dropped.turn_id,
                "role": dropped.role,
                "char_count": len(dropped.text),
            })

    def _violates_limits(self) -> bool:
        """Return True if turn or character limits are exceeded."""
        if len(self._turns) > MAX_CONTEXT_TURNS:
            return True

        total_chars = sum(len(t.text) for t in self._turns)
        return total_chars > MAX_CONTEXT_CHARS


class ConversationRecorder:
    """
    Loop listener that commits finalized user/assistant pairs.

    The user utterance is held until the assistant utterance for the
    same turn arrives, so a failed Think phase never leaves an orphaned
    user turn in the context. Turn ids at or below the last committed
    id are ignored.
    """

    def __init__(self, context: ConversationContext) -> None:
        self._context = context
        self._pending: UserUtterance | None = None
        self._last_committed = 0

    @property
    def last_committed_turn_id(self) -> int:
        return self._last_committed

    def __call__(self, event: LoopEvent) -> None:
        if isinstance(event, UserUtterance):
            self._pending = event
            return

        if not isinstance(event, AssistantUtterance):
            return

        pending = self._pending
        if pending is None or pending.turn_id != event.turn_id:
            return

        self._pending = None
        if event.turn_id <= self._last_committed:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "context_stale_commit_ignored",
                "level": "DEBUG",
                "turn_id": event.turn_id,
                "last_committed": self._last_committed,
            })
            return

        self._context.add_user_turn(pending.text, pending.turn_id)
        self._context.add_assistant_turn(event.text, event.turn_id)
        self._last_committed = event.turn_id
