"""
Loop-level error taxonomy.

Rules:
- This enum classifies errors for notification and recovery policy.
- Recovery decisions live in the controller, not here.
- Cancellation is NOT an error kind and is never reported as one.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """
    Classified error kinds surfaced to loop subscribers.

    PERMISSION_DENIED:
        Microphone permission refused. Fatal: the loop stops and the
        user must act.

    NO_SPEECH_DETECTED:
        Recognition ended with an empty transcript. Benign: next
        iteration listens again.

    RECOGNITION_TRANSIENT:
        Network / aborted / unknown recognition failure. Notify and
        retry after backoff.

    AI_RESPONDER_FAILURE:
        Responder transport, timeout or empty reply. Speak phase is
        skipped for the turn.

    SYNTHESIS_FAILURE:
        Both synthesis providers failed. The loop proceeds regardless.

    MICROPHONE_BUSY:
        Capture was attempted while another owner held the microphone.
        Fatal: retrying would spin against the holder.

    INTERNAL:
        Unexpected exception inside the loop. Fatal.
    """

    PERMISSION_DENIED = "PERMISSION_DENIED"
    NO_SPEECH_DETECTED = "NO_SPEECH_DETECTED"
    RECOGNITION_TRANSIENT = "RECOGNITION_TRANSIENT"
    AI_RESPONDER_FAILURE = "AI_RESPONDER_FAILURE"
    SYNTHESIS_FAILURE = "SYNTHESIS_FAILURE"
    MICROPHONE_BUSY = "MICROPHONE_BUSY"
    INTERNAL = "INTERNAL"
