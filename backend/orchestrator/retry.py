"""
Retry policy helpers.

Purpose:
- Centralize the recognition backoff rule
- Keep the controller free of backoff tables

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import RECOGNITION_RETRY_BACKOFF_MS


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial attempt (no retry yet).
    - attempt >= 1 represents the Nth retry attempt.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Delay Calculation
# =============================================================================

def get_retry_delay_ms(attempt: RetryAttempt) -> int:
    """
    Returns delay before the next Listen after `attempt` consecutive
    transient recognition failures.

    attempt 1 -> first slot (0 ms), clamped at the last slot.
    """
    if attempt.attempt <= 0:
        return 0

    # Clamp attempt index to last backoff slot
    idx = min(attempt.attempt - 1, len(RECOGNITION_RETRY_BACKOFF_MS) - 1)
    return RECOGNITION_RETRY_BACKOFF_MS[idx]
