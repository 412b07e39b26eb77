"""
Exception hierarchy for the voice loop and its collaborators.

Rules:
- Exceptions cross component boundaries only where a caller must
  distinguish a failure class (capability missing, microphone busy,
  responder failed, one synthesis provider attempt failed).
- Recognition and synthesis *outcomes* are values, not exceptions.
"""

from __future__ import annotations


class VoiceLoopError(Exception):
    """Base class for all voice loop errors."""


class CapabilityUnavailableError(VoiceLoopError):
    """
    A platform capability is missing or cannot be configured.

    Raised at construction time (startup-fatal), e.g. no speech-to-text
    capability was supplied or a provider API key is absent.
    """


class MicrophoneBusyError(VoiceLoopError):
    """A capture was attempted while another owner holds the microphone."""

    def __init__(self, *, requested_by: str, held_by: str) -> None:
        super().__init__(
            f"microphone held by {held_by!r}; {requested_by!r} rejected"
        )
        self.requested_by = requested_by
        self.held_by = held_by


class ResponderError(VoiceLoopError):
    """The AI responder failed (transport, timeout, or empty reply)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class SynthesisProviderError(VoiceLoopError):
    """
    One synthesis provider attempt failed.

    reason is a short machine-readable tag:
    http_status / malformed_payload / network / empty_audio / engine / playback
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail
