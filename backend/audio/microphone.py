"""
Microphone ownership.

Responsibilities:
- Arbitrate the single exclusive capture resource (one owner at a time)
- Let callers wait for the resource to be released (handoff)

Non-responsibilities:
- No audio I/O (see audio.capture)
- No queuing of rejected owners (a busy microphone rejects, never waits)
"""

from __future__ import annotations

import asyncio
import time

from observability.logger import log_event
from orchestrator.errors import MicrophoneBusyError


def _now_ms() -> int:
    return int(time.time() * 1000)


class Microphone:
    """
    Exclusive microphone arbiter.

    Ownership is cooperative: RecognitionSession acquires on start and
    releases once its terminal outcome has been delivered. A second
    acquire by a different owner raises MicrophoneBusyError.
    """

    def __init__(self, name: str = "default") -> None:
        self._name = name
        self._owner: str | None = None
        self._released = asyncio.Event()
        self._released.set()

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def is_held(self) -> bool:
        return self._owner is not None

    def acquire(self, owner: str) -> None:
        if self._owner is not None and self._owner != owner:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "microphone_busy",
                "level": "WARNING",
                "microphone": self._name,
                "held_by": self._owner,
                "requested_by": owner,
            })
            raise MicrophoneBusyError(requested_by=owner, held_by=self._owner)

        self._owner = owner
        self._released.clear()
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "microphone_acquired",
            "level": "DEBUG",
            "microphone": self._name,
            "owner": owner,
        })

    def release(self, owner: str) -> None:
        """Idempotent. Releases by non-owners are ignored."""
        if self._owner != owner:
            return
        self._owner = None
        self._released.set()
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "microphone_released",
            "level": "DEBUG",
            "microphone": self._name,
            "owner": owner,
        })

    async def wait_released(self) -> None:
        """Wait until no owner holds the microphone."""
        await self._released.wait()
