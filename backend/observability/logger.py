"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_lines: bool = True
_min_level: int = _LEVELS["DEBUG"]


def configure(*, json_lines: bool = True, level: str = "DEBUG") -> None:
    """
    Set process-wide output options.

    Called once at startup from the app factory. Events carry an
    optional "level" key (default INFO); events below `level` are dropped.
    Plain-text mode renders `event_type key=value ...` for local runs.
    """
    global _json_lines, _min_level  # pylint: disable=global-statement
    _json_lines = json_lines
    _min_level = _LEVELS.get(level.upper(), _LEVELS["INFO"])


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, loop_id, phase, etc.

    This function:
    - Serializes to JSON
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _min_level:
        return

    if not _json_lines:
        _print(_render_plain(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the loop
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def _render_plain(event: Mapping[str, Any]) -> str:
    head = str(event.get("event_type", "event"))
    rest = " ".join(
        f"{key}={value!r}"
        for key, value in event.items()
        if key != "event_type"
    )
    return f"{head} {rest}".rstrip()
