"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000

# Capture queue bound (frames). Oldest frames are dropped past this.
CAPTURE_QUEUE_MAX_FRAMES: Final[int] = 500

# =============================================================================
# Speech Recognition
# =============================================================================

RECOGNITION_LANGUAGE_DEFAULT: Final[str] = "en-US"

# Platform-imposed session limits (mirrors browser recognizer behavior)
RECOGNITION_NO_SPEECH_TIMEOUT_S: Final[float] = 8.0
RECOGNITION_MAX_SESSION_S: Final[float] = 60.0

# Deepgram end-of-turn forcing window
RECOGNITION_EOT_TIMEOUT_MS: Final[int] = 800

# Platform error vocabulary
PLATFORM_ERROR_NOT_ALLOWED: Final[str] = "not-allowed"
PLATFORM_ERROR_SERVICE_NOT_ALLOWED: Final[str] = "service-not-allowed"
PLATFORM_ERROR_AUDIO_CAPTURE: Final[str] = "audio-capture"
PLATFORM_ERROR_NETWORK: Final[str] = "network"
PLATFORM_ERROR_ABORTED: Final[str] = "aborted"
PLATFORM_ERROR_NO_SPEECH: Final[str] = "no-speech"

# =============================================================================
# Wake Word
# =============================================================================

WAKE_PHRASE_DEFAULT: Final[str] = "jarvis"
STOP_PHRASE_DEFAULT: Final[str] = "jarvis stop"

# Pause between natural end and automatic restart of the wake session
WAKE_RESTART_DELAY_MS: Final[int] = 250

# =============================================================================
# Speech Synthesis
# =============================================================================

PRIMARY_SYNTHESIS_TIMEOUT_S: Final[float] = 6.0

# =============================================================================
# AI Responder
# =============================================================================

RESPONDER_TIMEOUT_S_DEFAULT: Final[float] = 30.0

SYSTEM_PROMPT_VERSION: Final[str] = "v1"
PROMPT_HASH_HEX_LEN: Final[int] = 8

# =============================================================================
# Conversation Context
# =============================================================================

MAX_CONTEXT_TURNS: Final[int] = 8
MAX_CONTEXT_CHARS: Final[int] = 6_000

# Truncation rule:
# While (turn_count > MAX_CONTEXT_TURNS) OR (total_chars > MAX_CONTEXT_CHARS):
#     drop oldest turn

# =============================================================================
# Retry Policy (transient recognition failures)
# =============================================================================

RECOGNITION_RETRY_BACKOFF_MS: Final[Tuple[int, ...]] = (0, 200, 400, 800)

