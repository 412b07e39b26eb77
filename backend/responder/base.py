"""
AI responder contract.

The responder is an opaque request/response collaborator: user text in,
assistant text out. The loop never interprets the reply (no markdown or
formatting semantics) and never aborts an in-flight request; timeouts
are the responder's own concern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AssistantReply:
    """Assistant text for one turn."""
    text: str


class AIResponder(ABC):
    """Abstract AI responder."""

    @abstractmethod
    async def respond(self, user_text: str, conversation_context: Any) -> AssistantReply:
        """
        Produce the assistant reply for user_text.

        conversation_context is passed through opaquely from the loop
        owner (None when no history is kept).

        Raises:
            ResponderError on transport failure, timeout, or empty reply.
        """
        raise NotImplementedError
