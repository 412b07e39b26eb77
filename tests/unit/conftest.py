# pylint: disable=missing-module-docstring,missing-function-docstring

import sys
from typing import Iterator

import pytest

from fakes import FakeSoundDevice
from observability import logger


# Modules that bind sounddevice at import time
_AUDIO_MODULES = ("audio.capture", "audio.playback", "recognition.deepgram")


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> Iterator[list[str]]:
    """Keep test output clean; every emitted line is collected here."""
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_json_lines", True)
    monkeypatch.setattr(logger, "_min_level", 10)
    yield lines


@pytest.fixture
def sound_device(monkeypatch: pytest.MonkeyPatch) -> Iterator[FakeSoundDevice]:
    """
    Replace sounddevice for the duration of a test.

    Audio modules are dropped from sys.modules so the next import binds
    the fake.
    """
    fake = FakeSoundDevice()
    monkeypatch.setitem(sys.modules, "sounddevice", fake)
    for name in _AUDIO_MODULES:
        monkeypatch.delitem(sys.modules, name, raising=False)
    yield fake
    for name in _AUDIO_MODULES:
        sys.modules.pop(name, None)
