"""
Authoritative voice loop phase enumeration.

Rules:
- This enum defines ONLY the loop control phases.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively by the controller.
"""

from __future__ import annotations

from enum import Enum


class LoopPhase(str, Enum):
    """
    Phases of the Listen -> Think -> Speak loop.

    IDLE:
        Initial phase before the first start().

    LISTENING / THINKING / SPEAKING:
        One in-flight phase-operation each (recognition session,
        responder call, synthesis job).

    STOPPING:
        stop() was requested; teardown of the in-flight phase is
        underway.

    STOPPED:
        Terminal until start() is called again.
    """

    IDLE = "IDLE"
    LISTENING = "LISTENING"
    THINKING = "THINKING"
    SPEAKING = "SPEAKING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
