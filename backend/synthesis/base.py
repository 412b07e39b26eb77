"""
Speech output contract (synthesize-and-play).

This module defines the *interface only*. Fallback policy, job
bookkeeping and cancellation semantics live in synthesis.chain.

Key invariants:
- begin() returns once playback has started; completion is signaled
  separately through on_complete / on_error.
- Exactly one of on_complete / on_error fires per begin(), and neither
  fires after halt().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable


CompleteHandler = Callable[[], None]
PlaybackErrorHandler = Callable[[str], None]


class SpeechOutput(ABC):
    """
    Abstract synthesize-and-play capability.

    Implementations are responsible for:
    - Turning text into audio (network call or local engine)
    - Playing it to the end on the local output device
    - Halting immediately on request

    Non-responsibilities:
    - No retries and no fallback decisions
    - No queuing: one utterance at a time, begin() replaces nothing
    """

    name: str = "speech_output"

    @abstractmethod
    async def begin(
        self,
        text: str,
        *,
        on_complete: CompleteHandler,
        on_error: PlaybackErrorHandler,
    ) -> None:
        """
        Prepare audio for text and start playback.

        Raises:
            SynthesisProviderError if audio could not be prepared
            (non-2xx, malformed payload, network error, empty audio,
            engine failure).

        Contract:
        - on_complete fires only after the last sample was played.
        - on_error(reason) fires if playback breaks after it started.
        """
        raise NotImplementedError

    @abstractmethod
    def halt(self) -> None:
        """Stop output immediately. Idempotent; no-op when silent."""
        raise NotImplementedError
